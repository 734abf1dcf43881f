"""Shared helpers for rendering tool output."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from crm_assistant.infra.config import config
from crm_assistant.models.tool import ToolLink

# Locales whose number format uses "." for thousands and "," for decimals
_COMMA_DECIMAL_LANGUAGES = {"sr", "hr", "bs", "sl", "de", "fr", "es", "it", "nl", "pt"}

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}


def to_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _language(locale: str) -> str:
    return (locale or "en").split("-")[0].split("_")[0].lower()


def format_money(amount: Any, currency: Optional[str] = None, locale: Optional[str] = None) -> str:
    currency = currency or config.DEFAULT_CURRENCY
    locale = locale or config.DEFAULT_LOCALE
    text = f"{to_float(amount):,.2f}"
    if _language(locale) in _COMMA_DECIMAL_LANGUAGES:
        text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{text} {currency}"


def format_date(value: Any, locale: Optional[str] = None) -> str:
    if value is None or value == "":
        return "N/A"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime):
        value = value.date()
    if _language(locale or config.DEFAULT_LOCALE) == "en":
        return value.isoformat()
    return value.strftime("%d.%m.%Y.")


def format_percent(part: Any, whole: Any, digits: int = 1) -> str:
    whole_value = to_float(whole)
    if whole_value == 0:
        return "0%"
    return f"{to_float(part) / whole_value * 100:.{digits}f}%"


def markdown_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for row in rows:
        lines.append("| " + " | ".join("-" if cell is None else str(cell) for cell in row) + " |")
    return "\n".join(lines)


def dashboard_link(path: str, text: str) -> ToolLink:
    return ToolLink(text=text, url=f"{config.DASHBOARD_BASE_PATH}/{path.lstrip('/')}")


def period_bounds(period: str, today: date) -> Tuple[date, date]:
    """
    Calendar bounds [start, end) for a reporting period containing `today`.

    week starts on Monday; ytd runs from January 1st to tomorrow.
    """
    if period == "week":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=7)
    if period == "month":
        start = today.replace(day=1)
        return start, add_months(start, 1)
    if period == "quarter":
        start = today.replace(month=(today.month - 1) // 3 * 3 + 1, day=1)
        return start, add_months(start, 3)
    if period == "year":
        start = today.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    if period == "ytd":
        return today.replace(month=1, day=1), today + timedelta(days=1)
    raise ValueError(f"Unknown period: {period}")


def previous_period_bounds(period: str, today: date) -> Tuple[date, date]:
    """The period immediately before the one containing `today`."""
    start, end = period_bounds(period, today)
    if period == "ytd":
        previous_start = start.replace(year=start.year - 1)
        return previous_start, previous_start + (end - start)
    return period_bounds(period, start - timedelta(days=1))


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return day.replace(year=day.year + month_index // 12, month=month_index % 12 + 1, day=1)


def mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0
