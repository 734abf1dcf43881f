"""Tenant member lookups."""

from typing import Optional

from crm_assistant.infra.database import fetch_one


async def find_acting_user(tenant_id: str) -> Optional[str]:
    """Id of a member of the tenant to record as creator of new records."""
    row = await fetch_one(
        tenant_id,
        """
            SELECT u.id FROM users u
            JOIN user_tenant_roles utr ON u.id = utr.user_id
            WHERE utr.tenant_id = :tenant_id
            ORDER BY utr.created_at ASC
            LIMIT 1
        """,
        {"tenant_id": tenant_id},
    )
    return str(row["id"]) if row else None
