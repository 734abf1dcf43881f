"""Document vault, inbox and account queries."""

from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import fetch_all, fetch_one


async def list_documents(tenant_id: str, search: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    search_clause = ""
    if search:
        search_clause = "AND (d.title ILIKE :search OR d.summary ILIKE :search)"
        params["search"] = f"%{search}%"
    return await fetch_all(
        tenant_id,
        f"""
            SELECT d.id, d.title, d.summary, d.tags, d.mimetype, d.created_at,
                   c.name AS company_name
            FROM documents d
            LEFT JOIN companies c ON d.company_id = c.id
            WHERE d.tenant_id = :tenant_id
              {search_clause}
            ORDER BY d.created_at DESC
            LIMIT :limit
        """,
        params,
    )


async def list_inbox_items(tenant_id: str, status: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    status_clause = ""
    if status:
        status_clause = "AND i.status = :status"
        params["status"] = status
    return await fetch_all(
        tenant_id,
        f"""
            SELECT i.id, i.display_name, i.file_name, i.status, i.amount, i.currency,
                   i.date, i.sender_email, i.created_at, i.transaction_id
            FROM inbox i
            WHERE i.tenant_id = :tenant_id
              {status_clause}
            ORDER BY i.created_at DESC
            LIMIT :limit
        """,
        params,
    )


async def connected_accounts(tenant_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT ca.id, ca.name, ca.bank_name, ca.account_type, ca.balance, ca.currency,
                   ca.last_synced_at
            FROM connected_accounts ca
            WHERE ca.tenant_id = :tenant_id
              AND COALESCE(ca.is_active, TRUE) = TRUE
            ORDER BY ca.balance DESC
        """,
        {"tenant_id": tenant_id},
    )


async def receivables_summary(tenant_id: str) -> Dict[str, Any]:
    row = await fetch_one(
        tenant_id,
        """
            SELECT COUNT(*) AS open_invoices,
                   COALESCE(SUM(total - COALESCE(paid_amount, 0)), 0) AS outstanding
            FROM invoices
            WHERE tenant_id = :tenant_id
              AND status NOT IN ('paid', 'cancelled', 'draft')
        """,
        {"tenant_id": tenant_id},
    )
    return row or {"open_invoices": 0, "outstanding": 0}


async def inbox_stats(tenant_id: str) -> Dict[str, Any]:
    by_status = await fetch_all(
        tenant_id,
        """
            SELECT status, COUNT(*) AS count
            FROM inbox
            WHERE tenant_id = :tenant_id
            GROUP BY status
        """,
        {"tenant_id": tenant_id},
    )
    recent = await fetch_one(
        tenant_id,
        """
            SELECT COUNT(*) AS last_7_days,
                   COUNT(CASE WHEN transaction_id IS NOT NULL THEN 1 END) AS matched
            FROM inbox
            WHERE tenant_id = :tenant_id
              AND created_at >= NOW() - INTERVAL '7 days'
        """,
        {"tenant_id": tenant_id},
    )
    return {"by_status": by_status, "recent": recent or {"last_7_days": 0, "matched": 0}}
