"""Build the immutable execution context for a request."""

import logging
import uuid
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crm_assistant.infra.config import config
from crm_assistant.models.context import ExecutionContext, UserSession

logger = logging.getLogger(__name__)


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug(f"Ignoring invalid timezone {name!r}")
        return False


def resolve_timezone(*candidates: Optional[str]) -> str:
    """First valid IANA zone name among the candidates, or the configured default."""
    for name in (*candidates, config.DEFAULT_TIMEZONE):
        if is_valid_timezone(name):
            return name
    return "UTC"


def build_context(
    session: UserSession,
    conversation_id: Optional[str] = None,
    timezone: Optional[str] = None,
) -> ExecutionContext:
    """
    Build the per-request ExecutionContext from the authenticated session.

    The tenant is the session's active tenant, else its company, else the
    user itself. The request timezone wins over the session timezone when
    both are valid.
    """
    tenant_id = session.active_tenant_id or session.company_id or session.user_id
    zone = resolve_timezone(timezone, session.timezone)
    return ExecutionContext(
        tenant_id=tenant_id,
        user_id=f"{session.user_id}:{tenant_id}",
        conversation_id=conversation_id or str(uuid.uuid4()),
        base_currency=session.base_currency or config.DEFAULT_CURRENCY,
        locale=session.locale or config.DEFAULT_LOCALE,
        timezone=zone,
        current_datetime=datetime.now(ZoneInfo(zone)),
        company_name=session.team_name or None,
        full_name=session.full_name,
    )
