"""Customer (company) queries."""

from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import execute_write, fetch_all, fetch_one


async def list_customers(
    tenant_id: str,
    page_size: int = 10,
    search: Optional[str] = None,
    industry: Optional[str] = None,
    country: Optional[str] = None,
) -> List[Dict[str, Any]]:
    where = ["tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": page_size}
    if search:
        where.append("(name ILIKE :search OR industry ILIKE :search OR city ILIKE :search OR country ILIKE :search)")
        params["search"] = f"%{search}%"
    if industry:
        where.append("industry ILIKE :industry")
        params["industry"] = f"%{industry}%"
    if country:
        where.append("country ILIKE :country")
        params["country"] = f"%{country}%"

    return await fetch_all(
        tenant_id,
        f"""
            SELECT id, name, industry, country, city, email, phone, created_at
            FROM companies
            WHERE {" AND ".join(where)}
            ORDER BY name ASC
            LIMIT :limit
        """,
        params,
    )


async def get_customer(tenant_id: str, customer_id: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(
        tenant_id,
        """
            SELECT c.id, c.name, c.industry, c.country, c.city, c.address, c.email,
                   c.phone, c.website, c.created_at,
                   (SELECT COUNT(*) FROM invoices i WHERE i.company_id = c.id AND i.tenant_id = :tenant_id) AS invoice_count,
                   (SELECT COALESCE(SUM(i.total), 0) FROM invoices i WHERE i.company_id = c.id AND i.tenant_id = :tenant_id) AS invoiced_total
            FROM companies c
            WHERE c.tenant_id = :tenant_id AND c.id::text = :customer_id
        """,
        {"tenant_id": tenant_id, "customer_id": customer_id},
    )


async def industries_summary(tenant_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT COALESCE(industry, 'Unknown') AS industry, COUNT(*) AS customer_count
            FROM companies
            WHERE tenant_id = :tenant_id
            GROUP BY COALESCE(industry, 'Unknown')
            ORDER BY customer_count DESC
        """,
        {"tenant_id": tenant_id},
    )


async def find_customers_by_name(tenant_id: str, name: str, limit: int = 5) -> List[Dict[str, Any]]:
    """Case-insensitive partial name match."""
    return await fetch_all(
        tenant_id,
        """
            SELECT id, name FROM companies
            WHERE tenant_id = :tenant_id AND name ILIKE :pattern
            ORDER BY name ASC
            LIMIT :limit
        """,
        {"tenant_id": tenant_id, "pattern": f"%{name}%", "limit": limit},
    )


async def insert_customer(tenant_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
    rows = await execute_write(
        tenant_id,
        """
            INSERT INTO companies (
                tenant_id, name, email, phone, website, industry, country, city, address, created_by
            ) VALUES (
                :tenant_id, :name, :email, :phone, :website, :industry, :country, :city, :address, :created_by
            )
            RETURNING id, name
        """,
        {**values, "tenant_id": tenant_id},
    )
    return rows[0]
