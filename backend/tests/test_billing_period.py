"""Tests for billing period arithmetic."""
from datetime import datetime

import pytest

from app.services.billing_period import BillingPeriod


def test_containing_and_offset():
    moment = datetime(2026, 1, 20, 8, 30)

    assert BillingPeriod.containing(moment) == BillingPeriod(1, 2026)
    assert BillingPeriod.containing(moment, offset_months=1) == BillingPeriod(12, 2025)
    assert BillingPeriod.containing(moment, offset_months=13) == BillingPeriod(12, 2024)


def test_previous_and_next_wrap_years():
    assert BillingPeriod(1, 2026).previous() == BillingPeriod(12, 2025)
    assert BillingPeriod(12, 2025).next() == BillingPeriod(1, 2026)


def test_bounds_are_half_open():
    start, end = BillingPeriod(12, 2025).bounds()

    assert start == datetime(2025, 12, 1)
    assert end == datetime(2026, 1, 1)


def test_label():
    assert str(BillingPeriod(3, 2026)) == "03/2026"


def test_invalid_month():
    with pytest.raises(ValueError):
        BillingPeriod(13, 2026)
    with pytest.raises(ValueError):
        BillingPeriod(0, 2026)
