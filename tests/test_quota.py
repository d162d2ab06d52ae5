"""
Tests for the quota calculator
"""
import math
import pytest
from hypothesis import given, strategies as st

from grading_billing.services.quota import calculate_usage


class TestCalculateUsage:
    """Test usage arithmetic"""

    def test_over_limit_is_not_clamped(self):
        """260 of 250 on Lite reports 104%"""
        summary = calculate_usage(used=260, base_limit=250, purchased=0)

        assert summary.percentage == pytest.approx(104.0)
        assert summary.is_at_limit is True
        assert summary.is_over_limit is True
        assert summary.total_limit == 250
        assert summary.remaining == 0

    def test_purchased_credits_extend_limit(self):
        summary = calculate_usage(used=260, base_limit=250, purchased=50)

        assert summary.total_limit == 300
        assert summary.is_at_limit is False
        assert summary.remaining == 40
        assert summary.percentage == pytest.approx(260 / 300 * 100)

    def test_exactly_at_limit(self):
        summary = calculate_usage(used=10, base_limit=10)
        assert summary.is_at_limit is True
        assert summary.is_over_limit is False
        assert summary.percentage == pytest.approx(100.0)

    def test_unlimited_plan(self):
        summary = calculate_usage(used=5000, base_limit=-1, purchased=20)

        assert summary.is_unlimited is True
        assert summary.total_limit is None
        assert summary.remaining is None
        assert summary.percentage == 0.0
        assert summary.is_at_limit is False

    def test_unlimited_override(self):
        summary = calculate_usage(used=1000, base_limit=10, unlimited_override=True)
        assert summary.is_unlimited is True
        assert summary.is_at_limit is False
        assert summary.base_limit == 10

    def test_zero_limit_has_no_division_by_zero(self):
        summary = calculate_usage(used=5, base_limit=0, purchased=0)
        assert summary.percentage == 0.0
        assert summary.total_limit == 0
        assert summary.is_over_limit is True

    def test_negative_inputs_treated_as_zero(self):
        summary = calculate_usage(used=-3, base_limit=10, purchased=-2)
        assert summary.used == 0
        assert summary.purchased == 0
        assert summary.total_limit == 10

    def test_to_dict(self):
        data = calculate_usage(used=3, base_limit=10).to_dict()
        assert data["used"] == 3
        assert data["total_limit"] == 10
        assert data["remaining"] == 7
        assert set(data) == {
            "used", "base_limit", "purchased", "total_limit", "percentage",
            "is_unlimited", "is_at_limit", "is_over_limit", "remaining",
        }

    @given(
        used=st.integers(min_value=0, max_value=10**9),
        base_limit=st.integers(min_value=-1, max_value=10**6),
        purchased=st.integers(min_value=0, max_value=10**6),
        override=st.booleans(),
    )
    def test_percentage_is_finite_and_non_negative(self, used, base_limit, purchased, override):
        summary = calculate_usage(used, base_limit, purchased, unlimited_override=override)

        assert summary.percentage >= 0
        assert math.isfinite(summary.percentage)
        if summary.is_unlimited:
            assert summary.total_limit is None
        else:
            assert summary.total_limit == base_limit + purchased
            assert summary.remaining >= 0
