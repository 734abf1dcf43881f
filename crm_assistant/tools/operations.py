"""Operations tools: document vault, inbox and bank accounts."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import operations as operations_queries
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import EmptyParams, ToolDefinition, ToolGroup, ToolResult
from crm_assistant.tools.formatting import (
    dashboard_link,
    format_date,
    format_money,
    format_percent,
    markdown_table,
    to_float,
)


class GetDocumentsParams(BaseModel):
    search: Optional[str] = Field(None, description="Search term for document title or summary")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


class GetInboxItemsParams(BaseModel):
    status: Optional[Literal["new", "pending", "processing", "processed", "archived"]] = Field(
        None, description="Filter by inbox status"
    )
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


async def get_documents(ctx: ExecutionContext, params: GetDocumentsParams) -> ToolResult:
    rows = await operations_queries.list_documents(ctx.tenant_id, search=params.search, limit=params.limit)
    if not rows:
        return ToolResult(text="No documents found.")
    table = markdown_table(
        ["Title", "Company", "Type", "Tags", "Created"],
        [
            (
                r.get("title") or "Untitled",
                r.get("company_name") or "-",
                r.get("mimetype") or "-",
                ", ".join(r["tags"]) if r.get("tags") else "-",
                format_date(r.get("created_at"), ctx.locale),
            )
            for r in rows
        ],
    )
    return ToolResult(
        text=f"## Documents ({len(rows)})\n\n{table}",
        link=dashboard_link("vault", "Open document vault"),
    )


async def get_inbox_items(ctx: ExecutionContext, params: GetInboxItemsParams) -> ToolResult:
    rows = await operations_queries.list_inbox_items(ctx.tenant_id, status=params.status, limit=params.limit)
    if not rows:
        return ToolResult(text="Inbox is empty." if not params.status else f"No inbox items with status {params.status}.")
    table = markdown_table(
        ["Item", "From", "Amount", "Date", "Status", "Matched"],
        [
            (
                r.get("display_name") or r.get("file_name") or "Untitled",
                r.get("sender_email") or "-",
                format_money(r["amount"], r.get("currency") or ctx.base_currency, ctx.locale)
                if r.get("amount") is not None
                else "-",
                format_date(r.get("date") or r.get("created_at"), ctx.locale),
                r["status"],
                "✅" if r.get("transaction_id") else "-",
            )
            for r in rows
        ],
    )
    return ToolResult(
        text=f"## Inbox ({len(rows)} items)\n\n{table}",
        link=dashboard_link("inbox", "Open inbox"),
    )


async def get_account_balances(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    accounts = await operations_queries.connected_accounts(ctx.tenant_id)
    receivables = await operations_queries.receivables_summary(ctx.tenant_id)
    if not accounts:
        return ToolResult(text="No connected bank accounts found.")

    total = sum(to_float(a.get("balance")) for a in accounts)
    table = markdown_table(
        ["Account", "Bank", "Type", "Balance", "Last Synced"],
        [
            (
                a["name"],
                a.get("bank_name") or "-",
                a.get("account_type") or "-",
                format_money(a.get("balance"), a.get("currency") or ctx.base_currency, ctx.locale),
                format_date(a.get("last_synced_at"), ctx.locale),
            )
            for a in accounts
        ],
    )
    outstanding = to_float(receivables.get("outstanding"))
    text = (
        f"## Account Balances\n\n{table}\n\n"
        f"**Total Balance:** {format_money(total, ctx.base_currency, ctx.locale)}\n"
        f"**Outstanding Receivables:** {format_money(outstanding, ctx.base_currency, ctx.locale)} "
        f"({int(to_float(receivables.get('open_invoices')))} open invoices)\n"
        f"**Projected Position:** {format_money(total + outstanding, ctx.base_currency, ctx.locale)}"
    )
    return ToolResult(text=text, link=dashboard_link("settings/accounts", "Manage accounts"))


async def get_inbox_stats(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    stats = await operations_queries.inbox_stats(ctx.tenant_id)
    by_status = stats["by_status"]
    total = sum(int(to_float(r["count"])) for r in by_status)
    if total == 0:
        return ToolResult(text="Inbox is empty.")

    recent = stats["recent"]
    table = markdown_table(
        ["Status", "Items", "Share"],
        [(r["status"], int(to_float(r["count"])), format_percent(r["count"], total)) for r in by_status],
    )
    last_week = int(to_float(recent.get("last_7_days")))
    matched = int(to_float(recent.get("matched")))
    text = (
        f"## Inbox Statistics\n\n{table}\n\n**Total Items:** {total}\n"
        f"**Received in last 7 days:** {last_week} ({format_percent(matched, last_week, 0)} matched to transactions)"
    )
    return ToolResult(text=text)


TOOLS = [
    ToolDefinition(
        name="getDocuments",
        description="Search documents in the vault by title or summary",
        group=ToolGroup.OPERATIONS,
        parameters_model=GetDocumentsParams,
        executor=get_documents,
        failure_message="Failed to retrieve documents",
    ),
    ToolDefinition(
        name="getInboxItems",
        description="List inbox items (received receipts and invoices) with status filtering",
        group=ToolGroup.OPERATIONS,
        parameters_model=GetInboxItemsParams,
        executor=get_inbox_items,
        failure_message="Failed to retrieve inbox items",
    ),
    ToolDefinition(
        name="getAccountBalances",
        description="Balances of connected bank accounts together with outstanding receivables",
        group=ToolGroup.OPERATIONS,
        parameters_model=EmptyParams,
        executor=get_account_balances,
        failure_message="Failed to retrieve account balances",
    ),
    ToolDefinition(
        name="getInboxStats",
        description="Inbox statistics and processing metrics",
        group=ToolGroup.OPERATIONS,
        parameters_model=EmptyParams,
        executor=get_inbox_stats,
        failure_message="Failed to retrieve inbox statistics",
    ),
]
