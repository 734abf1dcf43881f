"""API authentication: resolves an API key to a user session."""

import asyncio
import logging
from typing import Optional

import bcrypt
from fastapi import Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import text

from crm_assistant.infra.config import config
from crm_assistant.infra.database import get_db_session
from crm_assistant.infra.error_handler import AuthenticationError
from crm_assistant.models.context import UserSession

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)

MIN_KEY_LENGTH = 16


def get_key_prefix(api_key: str) -> str:
    """First 8 characters of the key, stored in clear for lookup."""
    return api_key[:8] if len(api_key) >= 8 else api_key


def hash_api_key(api_key: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(api_key.encode("utf-8"), salt).decode("utf-8")


def verify_key_hash(api_key: str, key_hash: str) -> bool:
    """Check a plain key against its bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(api_key.encode("utf-8"), key_hash.encode("utf-8"))
    except ValueError:
        return False


def _lookup_session(api_key: str) -> Optional[UserSession]:
    # bcrypt hashes are slow, so candidates are narrowed by prefix first
    with get_db_session() as session:
        rows = session.execute(
            text("""
                SELECT ak.id AS key_id, ak.key_hash,
                       u.id AS user_id, u.first_name, u.last_name, u.email, u.company_id,
                       uat.active_tenant_id,
                       COALESCE(t.name, c.name) AS team_name
                FROM api_keys ak
                JOIN users u ON ak.user_id = u.id
                LEFT JOIN user_active_tenant uat ON uat.user_id = u.id
                LEFT JOIN tenants t ON t.id = COALESCE(uat.active_tenant_id, u.tenant_id)
                LEFT JOIN companies c ON c.id = u.company_id
                WHERE ak.key_prefix = :key_prefix
                  AND ak.is_active = TRUE
                  AND (ak.expires_at IS NULL OR ak.expires_at > NOW())
            """),
            {"key_prefix": get_key_prefix(api_key)},
        ).fetchall()

        for row in rows:
            if not verify_key_hash(api_key, row.key_hash):
                continue
            session.execute(
                text("UPDATE api_keys SET last_used_at = NOW() WHERE id = :key_id"),
                {"key_id": row.key_id},
            )
            full_name = " ".join(part for part in (row.first_name, row.last_name) if part) or None
            return UserSession(
                user_id=str(row.user_id),
                company_id=str(row.company_id) if row.company_id else None,
                active_tenant_id=str(row.active_tenant_id) if row.active_tenant_id else None,
                team_name=row.team_name,
                full_name=full_name,
                email=row.email,
            )
    return None


def dev_session() -> UserSession:
    return UserSession(
        user_id=config.DEV_USER_ID,
        active_tenant_id=config.DEV_TENANT_ID,
        team_name="Development",
        full_name="Developer",
    )


async def authenticate(api_key: Optional[str]) -> UserSession:
    """
    Resolve a raw API key to a UserSession.

    Raises:
        AuthenticationError: key missing, malformed or unknown
    """
    if not api_key:
        if config.AUTH_DISABLED and config.APP_ENV != "production":
            return dev_session()
        raise AuthenticationError("API key required. Provide X-API-Key header or Bearer token.")

    if len(api_key) < MIN_KEY_LENGTH:
        raise AuthenticationError("Invalid API key format")

    session = await asyncio.to_thread(_lookup_session, api_key)
    if session is None:
        logger.warning("API key rejected", extra={"key_prefix": get_key_prefix(api_key)})
        raise AuthenticationError("Invalid API key")
    return session


async def get_current_session(
    api_key: Optional[str] = Security(api_key_header),
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> UserSession:
    """FastAPI dependency: X-API-Key header or Authorization: Bearer token."""
    key = api_key or (bearer.credentials if bearer else None)
    return await authenticate(key)
