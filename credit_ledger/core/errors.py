"""API error classes.

Each error carries a machine-readable code, a message, and the HTTP status
the exception handlers in ``credit_ledger.main`` translate it to.

Financial outcomes that are expected (insufficient balance, idempotent
replay) are modelled as service results first; the API layer raises
``InsufficientBalanceError`` only when turning a result into a response.
"""


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Rejected before any transaction opens; nothing is written.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Also used when a resource exists but belongs to another user, so that
    existence is not leaked.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class InsufficientBalanceError(APIError):
    """Not enough credits for a spend (402).

    Recoverable: the caller is expected to prompt a top-up. Details carry
    the current balance and the amount that was requested.

    Args:
        balance: Current credit balance.
        required: Credits the rejected spend asked for.
    """

    def __init__(self, balance: int, required: int) -> None:
        super().__init__(
            code="INSUFFICIENT_BALANCE",
            message=f"Your balance is {balance} credits. Please top up to continue.",
            status_code=402,
            details=[{"balance": balance, "required": required}],
        )


class UpstreamMismatchError(ForbiddenError):
    """Payment-provider customer does not belong to the expected user (403).

    Security: refusing is mandatory; crediting the wrong account is worse
    than crediting none. The event is logged for manual review.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="UPSTREAM_MISMATCH",
            message="Payment does not belong to the authenticated account",
            status_code=403,
        )


class AdminRequiredError(UnauthorizedError):
    """Operator credential missing or wrong (401).

    Raised by the require_admin_key dependency.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Operator credential required",
            status_code=401,
        )


class TransientStoreError(APIError):
    """Ledger store could not commit (503).

    Nothing was applied; retrying with the same idempotency key is safe.
    """

    def __init__(self, message: str = "Ledger temporarily unavailable") -> None:
        super().__init__(
            code="TRANSIENT_STORE_FAILURE",
            message=message,
            status_code=503,
        )


class PaymentGatewayError(APIError):
    """Payment gateway lookup failed (502)."""

    def __init__(self, message: str = "Payment provider request failed") -> None:
        super().__init__(
            code="PAYMENT_GATEWAY_ERROR",
            message=message,
            status_code=502,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
