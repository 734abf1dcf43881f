"""Tests for tool output helpers."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from crm_assistant.tools.formatting import (
    add_months,
    dashboard_link,
    format_date,
    format_money,
    format_percent,
    markdown_table,
    period_bounds,
    previous_period_bounds,
    to_float,
)


class TestNumbers:
    """Test amount and percentage formatting."""

    def test_money_english(self):
        assert format_money(1234567.891, "USD", "en-US") == "1,234,567.89 USD"

    def test_money_serbian(self):
        """Test that comma-decimal locales swap separators."""
        assert format_money(Decimal("1234.5"), "RSD", "sr-RS") == "1.234,50 RSD"

    def test_to_float(self):
        assert to_float(None) == 0.0
        assert to_float("12.5") == 12.5
        assert to_float("n/a") == 0.0
        assert to_float(Decimal("3.10")) == 3.1

    def test_percent(self):
        assert format_percent(1, 4) == "25.0%"
        assert format_percent(5, 0) == "0%"


class TestDates:
    """Test date formatting and reporting periods."""

    def test_format_date(self):
        assert format_date(date(2026, 3, 5), "en-US") == "2026-03-05"
        assert format_date(datetime(2026, 3, 5, 12, 0), "sr-RS") == "05.03.2026."
        assert format_date(None) == "N/A"
        assert format_date("2026-03-05T10:00:00Z", "en") == "2026-03-05"

    @pytest.mark.parametrize("period,expected", [
        ("week", (date(2026, 3, 9), date(2026, 3, 16))),
        ("month", (date(2026, 3, 1), date(2026, 4, 1))),
        ("quarter", (date(2026, 1, 1), date(2026, 4, 1))),
        ("year", (date(2026, 1, 1), date(2027, 1, 1))),
        ("ytd", (date(2026, 1, 1), date(2026, 3, 16))),
    ])
    def test_period_bounds(self, period, expected):
        """Test calendar bounds for 2026-03-15 (a Sunday)."""
        assert period_bounds(period, date(2026, 3, 15)) == expected

    def test_previous_period(self):
        assert previous_period_bounds("month", date(2026, 1, 20)) == (date(2025, 12, 1), date(2026, 1, 1))
        assert previous_period_bounds("quarter", date(2026, 3, 15)) == (date(2025, 10, 1), date(2026, 1, 1))

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_bounds("decade", date(2026, 1, 1))

    def test_add_months_wraps_years(self):
        assert add_months(date(2026, 11, 20), 3) == date(2027, 2, 1)
        assert add_months(date(2026, 1, 31), -1) == date(2025, 12, 1)


class TestRendering:
    """Test tables and links."""

    def test_markdown_table(self):
        table = markdown_table(["A", "B"], [(1, None), ("x", "y")])
        assert table.splitlines() == ["| A | B |", "|---|---|", "| 1 | - |", "| x | y |"]

    def test_dashboard_link(self):
        link = dashboard_link("/sales/invoices", "Open")
        assert link.url == "/dashboard/sales/invoices"
        assert link.text == "Open"
