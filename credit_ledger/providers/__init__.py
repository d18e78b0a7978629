"""External collaborator adapters (payment gateway)."""
