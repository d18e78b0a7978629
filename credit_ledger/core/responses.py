"""Response envelope models.

Every endpoint answers with {"data": ...} on success, {"data": [...],
"meta": {...}} for collections, and {"error": {...}} on failure.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata for collections.

    Attributes:
        total: Total number of items across all pages.
        page: Current page number (1-indexed).
        per_page: Number of items per page.
    """

    total: int
    page: int
    per_page: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        """Number of pages needed to display all items (0 when empty)."""
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/credits/balance")
        async def get_balance(...) -> DataResponse[BalanceResponse]:
            return DataResponse(data=BalanceResponse(...))
    """

    data: T


class ListResponse(BaseModel, Generic[T]):
    """Standard response envelope for collections.

    Usage:
        entries, total = await LedgerRepository.list_by_user(...)
        return ListResponse(
            data=[...],
            meta=PaginationMeta(
                total=total,
                page=pagination.page,
                per_page=pagination.per_page,
            ),
        )
    """

    data: list[T]
    meta: PaginationMeta


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "INSUFFICIENT_BALANCE").
        message: Human-readable error message.
        details: Optional list of structured details (balances, fields).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope: {"error": {...}}."""

    error: ErrorDetail
