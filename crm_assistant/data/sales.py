"""Quote and product queries."""

from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import fetch_all, fetch_one


async def list_quotes(
    tenant_id: str,
    page_size: int = 10,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    where = ["q.tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": page_size}
    if status:
        where.append("q.status = :status")
        params["status"] = status
    if search:
        where.append("q.quote_number ILIKE :search")
        params["search"] = f"%{search}%"

    return await fetch_all(
        tenant_id,
        f"""
            SELECT q.id, q.quote_number, q.status, q.total, q.currency, q.valid_until,
                   q.created_at, c.name AS customer_name
            FROM quotes q
            LEFT JOIN companies c ON q.company_id = c.id
            WHERE {" AND ".join(where)}
            ORDER BY q.created_at DESC
            LIMIT :limit
        """,
        params,
    )


async def quote_conversion_stats(tenant_id: str, period_days: int) -> Dict[str, Any]:
    row = await fetch_one(
        tenant_id,
        """
            SELECT
                COUNT(*) AS total_quotes,
                COUNT(CASE WHEN status = 'accepted' THEN 1 END) AS accepted,
                COUNT(CASE WHEN status = 'rejected' THEN 1 END) AS rejected,
                COUNT(CASE WHEN status = 'expired' THEN 1 END) AS expired,
                COUNT(CASE WHEN status IN ('draft', 'sent') THEN 1 END) AS pending,
                COALESCE(SUM(CASE WHEN status = 'accepted' THEN total ELSE 0 END), 0) AS accepted_value,
                COALESCE(SUM(total), 0) AS total_value
            FROM quotes
            WHERE tenant_id = :tenant_id
              AND created_at >= NOW() - make_interval(days => :days)
        """,
        {"tenant_id": tenant_id, "days": period_days},
    )
    return row or {}


async def list_products(
    tenant_id: str,
    page_size: int = 10,
    search: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    where = ["p.tenant_id = :tenant_id", "COALESCE(p.is_active, TRUE) = TRUE"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": page_size}
    if search:
        where.append("(p.name ILIKE :search OR p.sku ILIKE :search)")
        params["search"] = f"%{search}%"
    if category:
        where.append("pc.name ILIKE :category")
        params["category"] = f"%{category}%"

    return await fetch_all(
        tenant_id,
        f"""
            SELECT p.id, p.name, p.sku, p.unit_price, p.cost_price, p.currency, p.unit,
                   pc.name AS category_name
            FROM products p
            LEFT JOIN product_categories pc ON p.category_id = pc.id
            WHERE {" AND ".join(where)}
            ORDER BY p.name ASC
            LIMIT :limit
        """,
        params,
    )


async def product_categories(tenant_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT pc.id, pc.name, COUNT(p.id) AS product_count
            FROM product_categories pc
            LEFT JOIN products p ON p.category_id = pc.id AND p.tenant_id = :tenant_id
            WHERE pc.tenant_id = :tenant_id
            GROUP BY pc.id, pc.name
            ORDER BY pc.name ASC
        """,
        {"tenant_id": tenant_id},
    )
