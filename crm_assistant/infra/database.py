"""Database session management with tenant isolation."""

import asyncio
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from crm_assistant.infra.config import config


# Create engine with connection pooling
engine = create_engine(
    config.DATABASE_URL,
    poolclass=QueuePool,
    pool_size=10,  # Number of connections to maintain
    max_overflow=20,  # Max connections beyond pool_size
    pool_timeout=30,  # Seconds to wait for connection from pool
    pool_recycle=3600,  # Recycle connections after 1 hour
    pool_pre_ping=True,  # Verify connections before using
    echo=config.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session(tenant_id: Optional[str] = None) -> Generator[Session, None, None]:
    """
    Get a database session with tenant isolation.

    Sets app.current_tenant_id for RLS, local to the session transaction.
    """
    session = SessionLocal()
    try:
        if tenant_id:
            session.execute(
                text("SELECT set_config('app.current_tenant_id', :tenant_id, true)"),
                {"tenant_id": tenant_id},
            )

        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _run_query(tenant_id: Optional[str], sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    with get_db_session(tenant_id) as session:
        result = session.execute(text(sql), params)
        if not result.returns_rows:
            return []
        return [dict(row._mapping) for row in result.fetchall()]


async def fetch_all(tenant_id: Optional[str], sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Run a read query off the event loop and return rows as dicts."""
    return await asyncio.to_thread(_run_query, tenant_id, sql, params or {})


async def fetch_one(tenant_id: Optional[str], sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Run a read query and return the first row, or None."""
    rows = await fetch_all(tenant_id, sql, params)
    return rows[0] if rows else None


async def execute_write(tenant_id: str, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    Run a write statement in its own transaction.

    Returns the RETURNING rows, if any. The transaction commits when the
    session context exits and rolls back on any error.
    """
    return await asyncio.to_thread(_run_query, tenant_id, sql, params or {})


def _run_statements(tenant_id: str, statements: List[tuple]) -> List[List[Dict[str, Any]]]:
    results = []
    with get_db_session(tenant_id) as session:
        for sql, params in statements:
            result = session.execute(text(sql), params)
            results.append([dict(row._mapping) for row in result.fetchall()] if result.returns_rows else [])
    return results


async def execute_transaction(tenant_id: str, statements: List[tuple]) -> List[List[Dict[str, Any]]]:
    """Run several (sql, params) statements atomically in one session."""
    return await asyncio.to_thread(_run_statements, tenant_id, statements)
