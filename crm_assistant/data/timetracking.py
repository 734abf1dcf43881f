"""Project and task time queries."""

from datetime import date
from typing import Any, Dict, List, Optional

from crm_assistant.infra.database import fetch_all, fetch_one


async def time_entries(
    tenant_id: str,
    project_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    where = ["p.tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id, "limit": limit}
    if project_id:
        where.append("p.id::text = :project_id")
        params["project_id"] = project_id
    if start_date:
        where.append("t.updated_at >= :start_date")
        params["start_date"] = start_date
    if end_date:
        where.append("t.updated_at < :end_date + INTERVAL '1 day'")
        params["end_date"] = end_date
    return await fetch_all(
        tenant_id,
        f"""
            SELECT t.id, t.title, t.status, t.estimated_hours, t.actual_hours, t.updated_at,
                   p.name AS project_name,
                   TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS assignee
            FROM tasks t
            JOIN projects p ON t.project_id = p.id
            LEFT JOIN users u ON t.assigned_to = u.id
            WHERE {" AND ".join(where)}
            ORDER BY t.updated_at DESC
            LIMIT :limit
        """,
        params,
    )


async def project_time(tenant_id: str, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"tenant_id": tenant_id}
    project_clause = ""
    if project_id:
        project_clause = "AND p.id::text = :project_id"
        params["project_id"] = project_id
    return await fetch_all(
        tenant_id,
        f"""
            SELECT p.id, p.name, p.status, p.budget,
                   COUNT(t.id) AS task_count,
                   COUNT(CASE WHEN t.status IN ('done', 'completed') THEN 1 END) AS completed_tasks,
                   COALESCE(SUM(CAST(t.estimated_hours AS NUMERIC)), 0) AS total_estimated,
                   COALESCE(SUM(CAST(t.actual_hours AS NUMERIC)), 0) AS total_actual
            FROM projects p
            LEFT JOIN tasks t ON p.id = t.project_id
            WHERE p.tenant_id = :tenant_id
              {project_clause}
            GROUP BY p.id, p.name, p.status, p.budget
            ORDER BY total_actual DESC
            LIMIT 20
        """,
        params,
    )


async def team_utilization(tenant_id: str, period_days: int) -> List[Dict[str, Any]]:
    return await fetch_all(
        tenant_id,
        """
            SELECT u.id, TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS name,
                   COUNT(t.id) AS tasks_assigned,
                   COUNT(CASE WHEN t.status IN ('done', 'completed') THEN 1 END) AS tasks_completed,
                   COALESCE(SUM(CAST(t.estimated_hours AS NUMERIC)), 0) AS estimated_hours,
                   COALESCE(SUM(CAST(t.actual_hours AS NUMERIC)), 0) AS logged_hours
            FROM users u
            JOIN user_tenant_roles utr ON utr.user_id = u.id AND utr.tenant_id = :tenant_id
            LEFT JOIN tasks t ON u.id = t.assigned_to
                AND t.updated_at >= NOW() - make_interval(days => :days)
            GROUP BY u.id, u.first_name, u.last_name
            ORDER BY logged_hours DESC
        """,
        {"tenant_id": tenant_id, "days": period_days},
    )


async def time_stats(tenant_id: str) -> Dict[str, Any]:
    totals = await fetch_one(
        tenant_id,
        """
            SELECT COUNT(t.id) AS total_tasks,
                   COUNT(CASE WHEN t.status IN ('done', 'completed') THEN 1 END) AS completed_tasks,
                   COALESCE(SUM(CAST(t.estimated_hours AS NUMERIC)), 0) AS total_estimated,
                   COALESCE(SUM(CAST(t.actual_hours AS NUMERIC)), 0) AS total_actual
            FROM tasks t
            JOIN projects p ON t.project_id = p.id
            WHERE p.tenant_id = :tenant_id
        """,
        {"tenant_id": tenant_id},
    )
    by_status = await fetch_all(
        tenant_id,
        """
            SELECT t.status, COUNT(*) AS count,
                   COALESCE(SUM(CAST(t.actual_hours AS NUMERIC)), 0) AS hours
            FROM tasks t
            JOIN projects p ON t.project_id = p.id
            WHERE p.tenant_id = :tenant_id
            GROUP BY t.status
            ORDER BY count DESC
        """,
        {"tenant_id": tenant_id},
    )
    return {"totals": totals or {}, "by_status": by_status}
