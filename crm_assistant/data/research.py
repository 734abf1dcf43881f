"""Product, market and affordability queries used by the research tools."""

from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import fetch_all

_PRODUCT_STATS = """
    SELECT p.id, p.name, p.unit_price, p.cost_price, p.currency, pc.name AS category_name,
           (SELECT COUNT(*) FROM order_items oi
            JOIN orders o ON oi.order_id = o.id
            WHERE oi.product_id = p.id AND o.tenant_id = :tenant_id) AS times_ordered,
           (SELECT COALESCE(SUM(oi.quantity * oi.unit_price), 0) FROM order_items oi
            JOIN orders o ON oi.order_id = o.id
            WHERE oi.product_id = p.id AND o.tenant_id = :tenant_id) AS total_revenue
    FROM products p
    LEFT JOIN product_categories pc ON p.category_id = pc.id
    WHERE p.tenant_id = :tenant_id
"""


async def products_for_comparison(
    tenant_id: str,
    product_ids: Optional[List[str]] = None,
    category: Optional[str] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    sql = _PRODUCT_STATS
    if product_ids:
        sql += " AND p.id::text = ANY(:product_ids)"
        params["product_ids"] = list(product_ids)
    elif category:
        sql += " AND pc.name ILIKE :category"
        params["category"] = f"%{category}%"
    sql += " ORDER BY total_revenue DESC LIMIT :limit"
    return await fetch_all(tenant_id, sql, params)


async def customers_by_industry(tenant_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(c.industry, 'Unknown') AS label,
                   COUNT(*) AS count,
                   COALESCE(SUM(
                       (SELECT COALESCE(SUM(i.total), 0) FROM invoices i
                        WHERE i.company_id = c.id AND i.tenant_id = :tenant_id)
                   ), 0) AS revenue
            FROM companies c
            WHERE c.tenant_id = :tenant_id
            GROUP BY COALESCE(c.industry, 'Unknown')
            ORDER BY revenue DESC
            LIMIT 10
        """,
        {"tenant_id": tenant_id},
    )


async def monthly_invoicing(tenant_id: str, months: int = 6) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT TO_CHAR(DATE_TRUNC('month', i.issue_date), 'YYYY-MM') AS label,
                   COUNT(*) AS count,
                   COALESCE(SUM(i.total), 0) AS revenue,
                   COUNT(DISTINCT i.company_id) AS unique_customers
            FROM invoices i
            WHERE i.tenant_id = :tenant_id
              AND i.issue_date >= NOW() - make_interval(months => :months)
            GROUP BY DATE_TRUNC('month', i.issue_date)
            ORDER BY DATE_TRUNC('month', i.issue_date) DESC
        """,
        {"tenant_id": tenant_id, "months": months},
    )


async def top_selling_products(tenant_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT p.name AS label,
                   COUNT(DISTINCT o.id) AS count,
                   COALESCE(SUM(oi.quantity), 0) AS units_sold,
                   COALESCE(SUM(oi.quantity * oi.unit_price), 0) AS revenue
            FROM products p
            JOIN order_items oi ON p.id = oi.product_id
            JOIN orders o ON oi.order_id = o.id
            WHERE o.tenant_id = :tenant_id
            GROUP BY p.id, p.name
            ORDER BY revenue DESC
            LIMIT :limit
        """,
        {"tenant_id": tenant_id, "limit": limit},
    )


async def price_analysis(
    tenant_id: str,
    product_id: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """List price, cost, and average quoted/sold price per product."""
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    filters = ""
    if product_id:
        filters = " AND p.id::text = :product_id"
        params["product_id"] = product_id
    elif category:
        filters = " AND pc.name ILIKE :category"
        params["category"] = f"%{category}%"
    return await fetch_all(
        tenant_id,
        f"""
            SELECT p.id, p.name, p.unit_price, p.cost_price, p.currency, pc.name AS category_name,
                   COALESCE(AVG(qi.unit_price), p.unit_price) AS avg_quoted_price,
                   COALESCE(AVG(oi.unit_price), p.unit_price) AS avg_sold_price,
                   COUNT(DISTINCT qi.id) AS quote_count,
                   COUNT(DISTINCT oi.id) AS order_count
            FROM products p
            LEFT JOIN product_categories pc ON p.category_id = pc.id
            LEFT JOIN quote_items qi ON p.id = qi.product_id
                AND qi.quote_id IN (SELECT id FROM quotes WHERE tenant_id = :tenant_id)
            LEFT JOIN order_items oi ON p.id = oi.product_id
                AND oi.order_id IN (SELECT id FROM orders WHERE tenant_id = :tenant_id)
            WHERE p.tenant_id = :tenant_id{filters}
            GROUP BY p.id, p.name, p.unit_price, p.cost_price, p.currency, pc.name
            ORDER BY p.name ASC
            LIMIT :limit
        """,
        params,
    )
