"""
Financial aggregates over completed payments.

Payments carry a signed amount: positive is income, negative is an
expense. Every query filters on the tenant.
"""

from datetime import date
from typing import Any, Dict, List

from crm_assistant.infra.database import fetch_all, fetch_one

_EXPENSE_GROUPS = {
    "category": "COALESCE(p.category, 'Uncategorized')",
    "vendor": "COALESCE(p.merchant_name, p.description, 'Unknown')",
    "month": "TO_CHAR(DATE_TRUNC('month', p.date), 'YYYY-MM')",
}

_REVENUE_GROUPS = {
    "month": "TO_CHAR(DATE_TRUNC('month', p.date), 'YYYY-MM')",
    "client": "COALESCE(c.name, p.merchant_name, 'Unknown')",
    "category": "COALESCE(p.category, 'Uncategorized')",
}


async def monthly_totals(tenant_id: str, months: int) -> List[Dict[str, Any]]:
    """Income and expenses per calendar month, most recent first."""
    return await fetch_all(
        tenant_id,
        """
            SELECT TO_CHAR(DATE_TRUNC('month', p.date), 'YYYY-MM') AS month,
                   EXTRACT(MONTH FROM DATE_TRUNC('month', p.date))::int AS month_num,
                   COALESCE(SUM(CASE WHEN p.amount > 0 THEN p.amount ELSE 0 END), 0) AS income,
                   COALESCE(SUM(CASE WHEN p.amount < 0 THEN ABS(p.amount) ELSE 0 END), 0) AS expenses
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.date >= DATE_TRUNC('month', NOW()) - make_interval(months => :months)
            GROUP BY DATE_TRUNC('month', p.date)
            ORDER BY DATE_TRUNC('month', p.date) DESC
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def current_balance(tenant_id: str) -> float:
    """Connected account balances, or the running payment total without accounts."""
    row = await fetch_one(
        tenant_id,
        """
            SELECT COALESCE(
                (SELECT SUM(balance) FROM connected_accounts
                 WHERE tenant_id = :tenant_id AND COALESCE(is_active, TRUE) = TRUE),
                (SELECT SUM(amount) FROM payments
                 WHERE tenant_id = :tenant_id AND status = 'completed'),
                0
            ) AS balance
        """,
        {"tenant_id": tenant_id},
    )
    return float(row["balance"]) if row else 0.0


async def expenses_grouped(tenant_id: str, months: int, group_by: str = "category") -> List[Dict[str, Any]]:
    key = _EXPENSE_GROUPS[group_by]
    return await fetch_all(
        tenant_id,
        f"""
            SELECT {key} AS label,
                   COUNT(*) AS count,
                   COALESCE(SUM(ABS(p.amount)), 0) AS amount
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.amount < 0
              AND p.date >= NOW() - make_interval(months => :months)
            GROUP BY {key}
            ORDER BY {"label DESC" if group_by == "month" else "amount DESC"}
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def revenue_grouped(tenant_id: str, months: int, group_by: str = "month") -> List[Dict[str, Any]]:
    key = _REVENUE_GROUPS[group_by]
    return await fetch_all(
        tenant_id,
        f"""
            SELECT {key} AS label,
                   COUNT(*) AS count,
                   COALESCE(SUM(p.amount), 0) AS amount
            FROM payments p
            LEFT JOIN companies c ON p.company_id = c.id
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.amount > 0
              AND p.date >= NOW() - make_interval(months => :months)
            GROUP BY {key}
            ORDER BY {"label DESC" if group_by == "month" else "amount DESC"}
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def recurring_expenses(tenant_id: str, months: int) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(p.merchant_name, p.description, 'Unknown') AS label,
                   COUNT(*) AS occurrences,
                   COALESCE(AVG(ABS(p.amount)), 0) AS avg_amount
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.amount < 0
              AND p.is_recurring = TRUE
              AND p.date >= NOW() - make_interval(months => :months)
            GROUP BY COALESCE(p.merchant_name, p.description, 'Unknown')
            ORDER BY avg_amount DESC
            LIMIT 10
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def period_totals(tenant_id: str, start: date, end: date) -> Dict[str, float]:
    """Income and expenses for payments dated in [start, end)."""
    row = await fetch_one(
        tenant_id,
        """
            SELECT COALESCE(SUM(CASE WHEN p.amount > 0 THEN p.amount ELSE 0 END), 0) AS income,
                   COALESCE(SUM(CASE WHEN p.amount < 0 THEN ABS(p.amount) ELSE 0 END), 0) AS expenses,
                   COUNT(*) AS count
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.date >= :start AND p.date < :end
        """,
        {"tenant_id": tenant_id, "start": start, "end": end},
    )
    if not row:
        return {"income": 0.0, "expenses": 0.0, "count": 0}
    return {"income": float(row["income"]), "expenses": float(row["expenses"]), "count": int(row["count"])}


async def period_categories(tenant_id: str, start: date, end: date) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(p.category, 'Uncategorized') AS category,
                   COALESCE(SUM(CASE WHEN p.amount > 0 THEN p.amount ELSE 0 END), 0) AS income,
                   COALESCE(SUM(CASE WHEN p.amount < 0 THEN ABS(p.amount) ELSE 0 END), 0) AS expenses
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.date >= :start AND p.date < :end
            GROUP BY COALESCE(p.category, 'Uncategorized')
        """,
        {"tenant_id": tenant_id, "start": start, "end": end},
    )


async def top_counterparties(tenant_id: str, start: date, end: date, inflow: bool, limit: int = 5) -> List[Dict[str, Any]]:
    sign = "p.amount > 0" if inflow else "p.amount < 0"
    return await fetch_all(
        tenant_id,
        f"""
            SELECT COALESCE(c.name, p.merchant_name, p.description, 'Unknown') AS label,
                   COALESCE(SUM(ABS(p.amount)), 0) AS amount
            FROM payments p
            LEFT JOIN companies c ON p.company_id = c.id
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND {sign}
              AND p.date >= :start AND p.date < :end
            GROUP BY COALESCE(c.name, p.merchant_name, p.description, 'Unknown')
            ORDER BY amount DESC
            LIMIT :limit
        """,
        {"tenant_id": tenant_id, "start": start, "end": end, "limit": limit},
    )


async def expense_transactions(tenant_id: str, months: int) -> List[Dict[str, Any]]:
    """Individual expense payments, newest first."""
    return await fetch_all(
        tenant_id,
        """
            SELECT p.date, ABS(p.amount) AS amount,
                   COALESCE(p.category, 'Uncategorized') AS category,
                   COALESCE(p.merchant_name, p.description, 'Unknown') AS merchant,
                   COALESCE(p.is_recurring, FALSE) AS is_recurring
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.amount < 0
              AND p.date >= NOW() - make_interval(months => :months)
            ORDER BY p.date DESC
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def recurring_expense_total(tenant_id: str) -> float:
    """Recurring expenses over the last month."""
    row = await fetch_one(
        tenant_id,
        """
            SELECT COALESCE(SUM(ABS(p.amount)), 0) AS total
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.status = 'completed'
              AND p.amount < 0
              AND p.is_recurring = TRUE
              AND p.date >= NOW() - INTERVAL '1 month'
        """,
        {"tenant_id": tenant_id},
    )
    return float(row["total"]) if row else 0.0
