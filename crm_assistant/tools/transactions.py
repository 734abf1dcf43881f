"""Transaction tools over bank payments."""

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import transactions as transaction_queries
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


class GetTransactionsParams(BaseModel):
    startDate: Optional[date] = Field(None, description="Start date (YYYY-MM-DD)")
    endDate: Optional[date] = Field(None, description="End date (YYYY-MM-DD)")
    category: Optional[str] = Field(None, description="Filter by category")
    minAmount: Optional[float] = Field(None, ge=0, description="Minimum absolute amount")
    maxAmount: Optional[float] = Field(None, ge=0, description="Maximum absolute amount")
    type: Literal["income", "expense", "all"] = Field("all", description="Transaction type")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


class SearchTransactionsParams(BaseModel):
    query: str = Field(..., min_length=1, description="Text to search in counterparty, description or reference")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


class GetTransactionStatsParams(BaseModel):
    period: Literal["week", "month", "quarter", "year"] = Field("month", description="Period to analyze")


class GetTransactionsByVendorParams(BaseModel):
    vendorName: str = Field(..., min_length=1, description="Vendor or counterparty name")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")


def _transactions_table(ctx: ExecutionContext, rows: List[Dict[str, Any]]) -> str:
    return markdown_table(
        ["Date", "Counterparty", "Description", "Category", "Amount"],
        [
            (
                format_date(r.get("date"), ctx.locale),
                r.get("counterparty") or "-",
                r.get("description") or "-",
                r.get("category") or "-",
                format_money(r.get("amount"), r.get("currency") or ctx.base_currency, ctx.locale),
            )
            for r in rows
        ],
    )


def _totals_line(ctx: ExecutionContext, rows: List[Dict[str, Any]]) -> str:
    income = sum(to_float(r["amount"]) for r in rows if to_float(r["amount"]) > 0)
    expenses = sum(-to_float(r["amount"]) for r in rows if to_float(r["amount"]) < 0)
    return (
        f"**In:** {format_money(income, ctx.base_currency, ctx.locale)} | "
        f"**Out:** {format_money(expenses, ctx.base_currency, ctx.locale)} | "
        f"**Net:** {format_money(income - expenses, ctx.base_currency, ctx.locale)}"
    )


async def get_transactions(ctx: ExecutionContext, params: GetTransactionsParams) -> ToolResult:
    rows = await transaction_queries.list_transactions(
        ctx.tenant_id,
        start_date=params.startDate,
        end_date=params.endDate,
        category=params.category,
        min_amount=params.minAmount,
        max_amount=params.maxAmount,
        kind=params.type,
        limit=params.limit,
    )
    if not rows:
        return ToolResult(text="No transactions found matching your criteria.")
    return ToolResult(
        text=f"## Transactions ({len(rows)})\n\n{_transactions_table(ctx, rows)}\n\n{_totals_line(ctx, rows)}",
        link=dashboard_link("transactions", "Open transactions"),
    )


async def search_transactions(ctx: ExecutionContext, params: SearchTransactionsParams) -> ToolResult:
    rows = await transaction_queries.search_transactions(ctx.tenant_id, params.query, limit=params.limit)
    if not rows:
        return ToolResult(text=f'No transactions found matching "{params.query}".')
    return ToolResult(
        text=f'## Transactions matching "{params.query}"\n\n{_transactions_table(ctx, rows)}\n\n{_totals_line(ctx, rows)}'
    )


async def get_transaction_stats(ctx: ExecutionContext, params: GetTransactionStatsParams) -> ToolResult:
    stats = await transaction_queries.transaction_stats(ctx.tenant_id, PERIOD_DAYS[params.period])
    totals = stats["totals"]
    count = int(to_float(totals.get("transaction_count")))
    if count == 0:
        return ToolResult(text=f"No transactions in the last {params.period}.")

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    summary = markdown_table(
        ["Metric", "Value"],
        [
            ("Transactions", count),
            ("Total Income", money(totals.get("total_income"))),
            ("Total Expenses", money(totals.get("total_expenses"))),
            ("Net", money(totals.get("net_amount"))),
            ("Average Transaction", money(totals.get("avg_transaction"))),
        ],
    )
    text = f"## Transaction Statistics ({params.period})\n\n{summary}"
    categories = stats["categories"]
    if categories:
        volume = sum(to_float(c["total"]) for c in categories)
        text += "\n\n### Top Categories\n" + markdown_table(
            ["Category", "Transactions", "Volume", "Share"],
            [(c["label"], c["count"], money(c["total"]), format_percent(c["total"], volume)) for c in categories],
        )
    return ToolResult(text=text)


def _frequency(days_between: Optional[float]) -> str:
    if days_between is None:
        return "-"
    days = to_float(days_between)
    if days <= 10:
        return "Weekly"
    if days <= 40:
        return "Monthly"
    if days <= 100:
        return "Quarterly"
    return "Yearly"


async def get_recurring_transactions(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    rows = await transaction_queries.recurring_candidates(ctx.tenant_id)
    if not rows:
        return ToolResult(text="No recurring transactions detected in the last 12 months.")
    table = markdown_table(
        ["Counterparty", "Amount", "Occurrences", "Frequency", "Last Seen"],
        [
            (
                r["counterparty"],
                format_money(r["amount"], ctx.base_currency, ctx.locale),
                int(to_float(r["occurrence_count"])),
                _frequency(r.get("avg_days_between")),
                format_date(r.get("last_date"), ctx.locale),
            )
            for r in rows
        ],
    )
    monthly_outflow = sum(
        -to_float(r["amount"]) for r in rows if to_float(r["amount"]) < 0 and _frequency(r.get("avg_days_between")) == "Monthly"
    )
    return ToolResult(
        text=(
            f"## Recurring Transactions\n\n{table}\n\n"
            f"**Estimated monthly recurring outflow:** {format_money(monthly_outflow, ctx.base_currency, ctx.locale)}"
        )
    )


async def get_transactions_by_vendor(ctx: ExecutionContext, params: GetTransactionsByVendorParams) -> ToolResult:
    rows = await transaction_queries.transactions_by_vendor(ctx.tenant_id, params.vendorName, limit=params.limit)
    if not rows:
        return ToolResult(text=f'No transactions found for vendor "{params.vendorName}".')
    return ToolResult(
        text=f"## Transactions with {params.vendorName}\n\n{_transactions_table(ctx, rows)}\n\n{_totals_line(ctx, rows)}"
    )


TOOLS = [
    ToolDefinition(
        name="getTransactions",
        description="List bank transactions with date, category, amount and type filters",
        group=ToolGroup.TRANSACTIONS,
        parameters_model=GetTransactionsParams,
        executor=get_transactions,
        failure_message="Failed to retrieve transactions",
    ),
    ToolDefinition(
        name="searchTransactions",
        description="Search transactions by counterparty, description or reference",
        group=ToolGroup.TRANSACTIONS,
        parameters_model=SearchTransactionsParams,
        executor=search_transactions,
        failure_message="Failed to search transactions",
    ),
    ToolDefinition(
        name="getTransactionStats",
        description="Transaction totals and top categories for a period",
        group=ToolGroup.TRANSACTIONS,
        parameters_model=GetTransactionStatsParams,
        executor=get_transaction_stats,
        failure_message="Failed to retrieve transaction statistics",
    ),
    ToolDefinition(
        name="getRecurringTransactions",
        description="Detect recurring payments such as subscriptions and rent",
        group=ToolGroup.TRANSACTIONS,
        parameters_model=EmptyParams,
        executor=get_recurring_transactions,
        failure_message="Failed to detect recurring transactions",
    ),
    ToolDefinition(
        name="getTransactionsByVendor",
        description="All transactions with one vendor or counterparty",
        group=ToolGroup.TRANSACTIONS,
        parameters_model=GetTransactionsByVendorParams,
        executor=get_transactions_by_vendor,
        failure_message="Failed to retrieve vendor transactions",
    ),
]
