"""Payment transaction queries."""

from datetime import date
from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import fetch_all, fetch_one

_SELECT = """
    SELECT p.id, p.date, p.amount, p.currency, p.category, p.description, p.reference,
           COALESCE(c.name, p.merchant_name) AS counterparty
    FROM payments p
    LEFT JOIN companies c ON p.company_id = c.id
"""


async def list_transactions(
    tenant_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category: Optional[str] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    kind: str = "all",
    limit: int = 20,
) -> List[Dict[str, Any]]:
    where = ["p.tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    if start_date:
        where.append("p.date >= :start_date")
        params["start_date"] = start_date
    if end_date:
        where.append("p.date <= :end_date")
        params["end_date"] = end_date
    if category:
        where.append("p.category ILIKE :category")
        params["category"] = f"%{category}%"
    if min_amount is not None:
        where.append("ABS(p.amount) >= :min_amount")
        params["min_amount"] = min_amount
    if max_amount is not None:
        where.append("ABS(p.amount) <= :max_amount")
        params["max_amount"] = max_amount
    if kind == "income":
        where.append("p.amount > 0")
    elif kind == "expense":
        where.append("p.amount < 0")
    return await fetch_all(
        tenant_id,
        _SELECT + f" WHERE {' AND '.join(where)} ORDER BY p.date DESC LIMIT :limit",
        params,
    )


async def search_transactions(tenant_id: str, query: str, limit: int = 20) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        _SELECT + """
            WHERE p.tenant_id = :tenant_id
              AND (c.name ILIKE :q OR p.merchant_name ILIKE :q OR p.description ILIKE :q
                   OR p.reference ILIKE :q OR p.notes ILIKE :q)
            ORDER BY p.date DESC
            LIMIT :limit
        """,
        {"tenant_id": tenant_id, "q": f"%{query}%", "limit": limit},
    )


async def transaction_stats(tenant_id: str, period_days: int) -> Dict[str, Any]:
    params = {"tenant_id": tenant_id, "days": period_days}
    totals = await fetch_one(
        tenant_id,
        """
            SELECT COUNT(*) AS transaction_count,
                   COALESCE(SUM(CASE WHEN p.amount > 0 THEN p.amount ELSE 0 END), 0) AS total_income,
                   COALESCE(SUM(CASE WHEN p.amount < 0 THEN ABS(p.amount) ELSE 0 END), 0) AS total_expenses,
                   COALESCE(SUM(p.amount), 0) AS net_amount,
                   COALESCE(AVG(ABS(p.amount)), 0) AS avg_transaction
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.date >= NOW() - make_interval(days => :days)
        """,
        params,
    )
    categories = await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(p.category, 'Uncategorized') AS label,
                   COUNT(*) AS count,
                   COALESCE(SUM(ABS(p.amount)), 0) AS total
            FROM payments p
            WHERE p.tenant_id = :tenant_id
              AND p.date >= NOW() - make_interval(days => :days)
            GROUP BY COALESCE(p.category, 'Uncategorized')
            ORDER BY total DESC
            LIMIT 5
        """,
        params,
    )
    return {"totals": totals or {}, "categories": categories}


async def recurring_candidates(tenant_id: str) -> List[Dict[str, Any]]:
    """Counterparty/amount pairs seen at least twice in the last year."""
    return await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(c.name, p.merchant_name, p.description, 'Unknown') AS counterparty,
                   p.amount,
                   COUNT(*) AS occurrence_count,
                   MAX(p.date) AS last_date,
                   EXTRACT(EPOCH FROM (MAX(p.date)::timestamp - MIN(p.date)::timestamp))
                       / NULLIF(COUNT(*) - 1, 0) / 86400 AS avg_days_between
            FROM payments p
            LEFT JOIN companies c ON p.company_id = c.id
            WHERE p.tenant_id = :tenant_id
              AND p.date >= NOW() - INTERVAL '12 months'
            GROUP BY COALESCE(c.name, p.merchant_name, p.description, 'Unknown'), p.amount
            HAVING COUNT(*) >= 2
            ORDER BY occurrence_count DESC
            LIMIT 20
        """,
        {"tenant_id": tenant_id},
    )


async def transactions_by_vendor(tenant_id: str, vendor_name: str, limit: int = 20) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        _SELECT + """
            WHERE p.tenant_id = :tenant_id
              AND (c.name ILIKE :vendor OR p.merchant_name ILIKE :vendor)
            ORDER BY p.date DESC
            LIMIT :limit
        """,
        {"tenant_id": tenant_id, "vendor": f"%{vendor_name}%", "limit": limit},
    )
