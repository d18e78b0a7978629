"""Tests for parse_included_credits().

Example-based cases pin the metadata conventions; Hypothesis checks that
any integer in range survives a trip through provider string metadata and
that no input ever raises.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from credit_ledger.models.ledger import MAX_CREDIT_AMOUNT
from credit_ledger.services.payment_events import (
    DYNAMIC_CREDIT_KEYS,
    PRODUCT_CREDIT_KEYS,
    parse_included_credits,
)

# =============================================================================
# Examples
# =============================================================================


class TestParseIncludedCredits:
    """Example-based parsing cases."""

    @pytest.mark.parametrize(
        ("metadata", "expected"),
        [
            ({"includedCredits": "100"}, 100),
            ({"included_credits": "40"}, 40),
            ({"credits": "7"}, 7),
            ({"credits": " 12 "}, 12),
            ({"credits": "100.0"}, 100),
            ({"credits": "0"}, 0),
            ({"credits": "-5"}, -5),
            ({"credits": 25}, 25),
        ],
    )
    def test_valid_values(self, metadata: dict, expected: int) -> None:
        """Integral decimal values are accepted."""
        assert parse_included_credits(metadata) == expected

    @pytest.mark.parametrize(
        "metadata",
        [
            None,
            {},
            {"other": "5"},
            {"credits": ""},
            {"credits": "   "},
            {"credits": "ten"},
            {"credits": "1.5"},
            {"credits": "NaN"},
            {"credits": "Infinity"},
            {"credits": str(MAX_CREDIT_AMOUNT + 1)},
        ],
    )
    def test_unusable_values(self, metadata: dict | None) -> None:
        """Missing, fractional, non-finite, or oversized values yield None."""
        assert parse_included_credits(metadata) is None

    def test_first_present_key_wins(self) -> None:
        """includedCredits beats credits, even when it is unusable."""
        assert parse_included_credits({"includedCredits": "10", "credits": "99"}) == 10
        assert parse_included_credits({"includedCredits": "oops", "credits": "99"}) is None

    def test_none_value_is_skipped(self) -> None:
        """A key present with a None value does not count as present."""
        assert parse_included_credits({"includedCredits": None, "credits": "3"}) == 3

    def test_custom_key_order(self) -> None:
        """Products prefer credits; dynamic sessions read only credits."""
        metadata = {"includedCredits": "10", "credits": "20"}

        assert parse_included_credits(metadata, PRODUCT_CREDIT_KEYS) == 20
        assert parse_included_credits({"includedCredits": "10"}, DYNAMIC_CREDIT_KEYS) is None


# =============================================================================
# Properties
# =============================================================================


@given(st.integers(min_value=-MAX_CREDIT_AMOUNT, max_value=MAX_CREDIT_AMOUNT))
def test_integers_in_range_parse_exactly(value: int) -> None:
    """Any in-range integer written as metadata parses back to itself."""
    assert parse_included_credits({"credits": str(value)}) == value


@given(st.text(max_size=40))
def test_never_raises(raw: str) -> None:
    """Arbitrary text yields an int in range or None."""
    parsed = parse_included_credits({"credits": raw})

    assert parsed is None or abs(parsed) <= MAX_CREDIT_AMOUNT
