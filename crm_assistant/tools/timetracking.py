"""Time tracking tools over project tasks."""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import timetracking as time_queries
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import EmptyParams, ToolDefinition, ToolGroup, ToolResult
from crm_assistant.tools.formatting import (
    PERIOD_DAYS,
    dashboard_link,
    format_date,
    format_money,
    format_percent,
    markdown_table,
    to_float,
)

# Working hours expected per person for utilization
HOURS_PER_WEEK = 40


class GetTimeEntriesParams(BaseModel):
    projectId: Optional[str] = Field(None, description="Filter by project ID")
    startDate: Optional[date] = Field(None, description="Start date (YYYY-MM-DD)")
    endDate: Optional[date] = Field(None, description="End date (YYYY-MM-DD)")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


class GetProjectTimeParams(BaseModel):
    projectId: Optional[str] = Field(None, description="Project ID; all projects when omitted")


class GetTeamUtilizationParams(BaseModel):
    period: Literal["week", "month", "quarter"] = Field("month", description="Time period to analyze")


def _hours(value) -> str:
    return f"{to_float(value):.1f}h"


async def get_time_entries(ctx: ExecutionContext, params: GetTimeEntriesParams) -> ToolResult:
    rows = await time_queries.time_entries(
        ctx.tenant_id,
        project_id=params.projectId,
        start_date=params.startDate,
        end_date=params.endDate,
        limit=params.limit,
    )
    if not rows:
        return ToolResult(text="No time entries found for the given filters.")
    table = markdown_table(
        ["Task", "Project", "Assignee", "Estimated", "Logged", "Status", "Updated"],
        [
            (
                r["title"],
                r.get("project_name") or "-",
                r.get("assignee") or "Unassigned",
                _hours(r.get("estimated_hours")),
                _hours(r.get("actual_hours")),
                r.get("status") or "-",
                format_date(r.get("updated_at"), ctx.locale),
            )
            for r in rows
        ],
    )
    total = sum(to_float(r.get("actual_hours")) for r in rows)
    return ToolResult(
        text=f"## Time Entries\n\n{table}\n\n**Total logged:** {total:.1f}h across {len(rows)} tasks",
        link=dashboard_link("projects", "Open projects"),
    )


async def get_project_time(ctx: ExecutionContext, params: GetProjectTimeParams) -> ToolResult:
    rows = await time_queries.project_time(ctx.tenant_id, project_id=params.projectId)
    if not rows:
        return ToolResult(text="No projects found." if not params.projectId else f"Project {params.projectId} not found.")

    def variance(row) -> str:
        estimated = to_float(row.get("total_estimated"))
        if estimated == 0:
            return "-"
        return f"{(to_float(row.get('total_actual')) - estimated) / estimated * 100:+.0f}%"

    table = markdown_table(
        ["Project", "Status", "Tasks", "Done", "Estimated", "Logged", "Variance", "Budget"],
        [
            (
                r["name"],
                r.get("status") or "-",
                int(to_float(r.get("task_count"))),
                format_percent(r.get("completed_tasks"), r.get("task_count"), 0),
                _hours(r.get("total_estimated")),
                _hours(r.get("total_actual")),
                variance(r),
                format_money(r["budget"], ctx.base_currency, ctx.locale) if r.get("budget") is not None else "-",
            )
            for r in rows
        ],
    )
    return ToolResult(text=f"## Project Time\n\n{table}")


async def get_team_utilization(ctx: ExecutionContext, params: GetTeamUtilizationParams) -> ToolResult:
    days = PERIOD_DAYS[params.period]
    rows = await time_queries.team_utilization(ctx.tenant_id, days)
    if not rows:
        return ToolResult(text="No team members found for this tenant.")

    capacity = HOURS_PER_WEEK * days / 7
    table = markdown_table(
        ["Member", "Tasks", "Completed", "Logged", "Utilization"],
        [
            (
                r.get("name") or "Unknown",
                int(to_float(r.get("tasks_assigned"))),
                int(to_float(r.get("tasks_completed"))),
                _hours(r.get("logged_hours")),
                format_percent(r.get("logged_hours"), capacity, 0),
            )
            for r in rows
        ],
    )
    total_logged = sum(to_float(r.get("logged_hours")) for r in rows)
    return ToolResult(
        text=(
            f"## Team Utilization ({params.period})\n\n{table}\n\n"
            f"**Team average:** {format_percent(total_logged, capacity * len(rows), 0)} "
            f"of {HOURS_PER_WEEK}h/week capacity"
        )
    )


async def get_time_stats(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    stats = await time_queries.time_stats(ctx.tenant_id)
    totals = stats["totals"]
    total_tasks = int(to_float(totals.get("total_tasks")))
    if total_tasks == 0:
        return ToolResult(text="No tracked tasks yet.")

    estimated = to_float(totals.get("total_estimated"))
    actual = to_float(totals.get("total_actual"))
    summary = markdown_table(
        ["Metric", "Value"],
        [
            ("Total Tasks", total_tasks),
            ("Completed", f"{int(to_float(totals.get('completed_tasks')))} ({format_percent(totals.get('completed_tasks'), total_tasks, 0)})"),
            ("Estimated Hours", _hours(estimated)),
            ("Logged Hours", _hours(actual)),
            ("Estimate Accuracy", format_percent(estimated, actual, 0) if actual else "-"),
        ],
    )
    by_status = markdown_table(
        ["Status", "Tasks", "Hours"],
        [(r.get("status") or "-", r["count"], _hours(r.get("hours"))) for r in stats["by_status"]],
    )
    return ToolResult(text=f"## Time Tracking Statistics\n\n{summary}\n\n### By Status\n{by_status}")


TOOLS = [
    ToolDefinition(
        name="getTimeEntries",
        description="List tracked task time with project, assignee and date filters",
        group=ToolGroup.TIMETRACKING,
        parameters_model=GetTimeEntriesParams,
        executor=get_time_entries,
        failure_message="Failed to retrieve time entries",
    ),
    ToolDefinition(
        name="getProjectTime",
        description="Total time logged per project compared with estimates",
        group=ToolGroup.TIMETRACKING,
        parameters_model=GetProjectTimeParams,
        executor=get_project_time,
        failure_message="Failed to retrieve project time",
    ),
    ToolDefinition(
        name="getTeamUtilization",
        description="Team utilization showing hours logged per team member",
        group=ToolGroup.TIMETRACKING,
        parameters_model=GetTeamUtilizationParams,
        executor=get_team_utilization,
        failure_message="Failed to calculate team utilization",
    ),
    ToolDefinition(
        name="getTimeStats",
        description="Overall time tracking statistics",
        group=ToolGroup.TIMETRACKING,
        parameters_model=EmptyParams,
        executor=get_time_stats,
        failure_message="Failed to retrieve time statistics",
    ),
]
