"""Invoice queries."""

from typing import Any, Dict, List, Optional, Tuple

from crm_assistant.infra.database import execute_transaction, fetch_all, fetch_one


async def list_invoices(
    tenant_id: str,
    page_size: int = 10,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """Most recent invoices matching the filters, plus the total match count."""
    where = ["i.tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": page_size}
    if status:
        where.append("i.status = :status")
        params["status"] = status
    if search:
        where.append("i.invoice_number ILIKE :search")
        params["search"] = f"%{search}%"
    where_clause = " AND ".join(where)

    rows = await fetch_all(
        tenant_id,
        f"""
            SELECT i.id, i.invoice_number, i.status, i.total, i.paid_amount, i.currency,
                   i.due_date, i.created_at, c.name AS customer_name
            FROM invoices i
            LEFT JOIN companies c ON i.company_id = c.id
            WHERE {where_clause}
            ORDER BY i.created_at DESC
            LIMIT :limit
        """,
        params,
    )
    count_row = await fetch_one(
        tenant_id,
        f"SELECT COUNT(*) AS total FROM invoices i WHERE {where_clause}",
        params,
    )
    return rows, int(count_row["total"]) if count_row else len(rows)


async def overdue_invoices(tenant_id: str) -> List[Dict[str, Any]]:
    """Unpaid invoices past their due date, oldest first."""
    return await fetch_all(
        tenant_id,
        """
            SELECT i.id, i.invoice_number, i.total, i.paid_amount, i.currency, i.due_date,
                   c.name AS customer_name
            FROM invoices i
            LEFT JOIN companies c ON i.company_id = c.id
            WHERE i.tenant_id = :tenant_id
              AND i.status NOT IN ('paid', 'cancelled', 'draft')
              AND i.due_date < CURRENT_DATE
              AND i.total > COALESCE(i.paid_amount, 0)
            ORDER BY i.due_date ASC
        """,
        {"tenant_id": tenant_id},
    )


async def count_invoices_in_year(tenant_id: str, year: int) -> int:
    row = await fetch_one(
        tenant_id,
        """
            SELECT COUNT(*) AS total FROM invoices
            WHERE tenant_id = :tenant_id AND EXTRACT(YEAR FROM created_at) = :year
        """,
        {"tenant_id": tenant_id, "year": year},
    )
    return int(row["total"]) if row else 0


async def insert_invoice(tenant_id: str, invoice: Dict[str, Any], items: List[Dict[str, Any]]) -> None:
    """Insert an invoice and its line items in one transaction."""
    statements = [(
        """
            INSERT INTO invoices (
                id, tenant_id, invoice_number, company_id, status, issue_date, due_date,
                subtotal, vat_rate, tax, total, paid_amount, currency, notes, created_by
            ) VALUES (
                :id, :tenant_id, :invoice_number, :company_id, 'draft', CURRENT_DATE, :due_date,
                :subtotal, :vat_rate, :tax, :total, 0, :currency, :notes, :created_by
            )
        """,
        {**invoice, "tenant_id": tenant_id},
    )]
    for item in items:
        statements.append((
            """
                INSERT INTO invoice_items (
                    invoice_id, product_name, description, quantity, unit_price,
                    discount, unit, vat_rate, total
                ) VALUES (
                    :invoice_id, :product_name, :description, :quantity, :unit_price,
                    :discount, :unit, :vat_rate, :total
                )
            """,
            {**item, "invoice_id": invoice["id"]},
        ))
    await execute_transaction(tenant_id, statements)
