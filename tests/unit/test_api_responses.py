"""Tests for response envelopes and pagination parameters."""

from credit_ledger.core.pagination import PaginationParams, pagination_params
from credit_ledger.core.responses import (
    DataResponse,
    ErrorDetail,
    ErrorResponse,
    ListResponse,
    PaginationMeta,
)
from credit_ledger.schemas.credits import SpendResponse


class TestPaginationMeta:
    """Tests for PaginationMeta.total_pages."""

    def test_total_pages_exact_division(self):
        assert PaginationMeta(total=100, page=1, per_page=20).total_pages == 5

    def test_total_pages_rounds_up(self):
        assert PaginationMeta(total=101, page=1, per_page=20).total_pages == 6

    def test_total_pages_zero_items(self):
        assert PaginationMeta(total=0, page=1, per_page=20).total_pages == 0

    def test_serializes_total_pages(self):
        meta = PaginationMeta(total=5, page=1, per_page=20)

        assert meta.model_dump() == {
            "total": 5,
            "page": 1,
            "per_page": 20,
            "total_pages": 1,
        }


class TestEnvelopes:
    """Data, list and error envelopes."""

    def test_data_response(self):
        response = DataResponse(data=SpendResponse(ok=True, balance=70, idempotent=False))

        assert response.model_dump() == {
            "data": {"ok": True, "balance": 70, "idempotent": False}
        }

    def test_list_response(self):
        response = ListResponse(
            data=[{"delta": 100}],
            meta=PaginationMeta(total=1, page=1, per_page=20),
        )

        dumped = response.model_dump()
        assert dumped["data"] == [{"delta": 100}]
        assert dumped["meta"]["total"] == 1

    def test_error_response(self):
        response = ErrorResponse(
            error=ErrorDetail(
                code="INSUFFICIENT_BALANCE",
                message="Your balance is 70 credits. Please top up to continue.",
                details=[{"balance": 70, "required": 100}],
            )
        )

        assert response.model_dump()["error"]["details"] == [
            {"balance": 70, "required": 100}
        ]


class TestPaginationParams:
    """Tests for PaginationParams and the pagination_params dependency."""

    def test_offset_page_one(self):
        assert PaginationParams(page=1, per_page=20).offset == 0

    def test_offset_calculation(self):
        params = PaginationParams(page=5, per_page=10)

        assert params.offset == 40  # (5 - 1) * 10
        assert params.limit == 10

    def test_dependency_returns_params(self):
        params = pagination_params(page=3, per_page=25)

        assert isinstance(params, PaginationParams)
        assert (params.page, params.per_page) == (3, 25)
