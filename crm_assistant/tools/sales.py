"""Quote and product catalog tools."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import sales as sales_queries
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


class GetQuotesParams(BaseModel):
    pageSize: int = Field(10, ge=1, le=50, description="Number of quotes to return")
    status: Optional[Literal["draft", "sent", "accepted", "rejected", "expired"]] = Field(
        None, description="Filter by quote status"
    )
    search: Optional[str] = Field(None, description="Search by quote number")


class GetQuoteConversionParams(BaseModel):
    period: Literal["week", "month", "quarter", "year"] = Field("month", description="Period to analyze")


class GetProductsParams(BaseModel):
    pageSize: int = Field(20, ge=1, le=50, description="Number of products to return")
    search: Optional[str] = Field(None, description="Search by product name or SKU")
    category: Optional[str] = Field(None, description="Filter by category name")


async def get_quotes(ctx: ExecutionContext, params: GetQuotesParams) -> ToolResult:
    rows = await sales_queries.list_quotes(
        ctx.tenant_id, page_size=params.pageSize, status=params.status, search=params.search
    )
    if not rows:
        return ToolResult(text="No quotes found matching your criteria.")

    table = markdown_table(
        ["Quote #", "Customer", "Status", "Amount", "Valid Until"],
        [
            (
                row["quote_number"],
                row.get("customer_name") or "N/A",
                row["status"],
                format_money(row["total"], row.get("currency") or ctx.base_currency, ctx.locale),
                format_date(row.get("valid_until"), ctx.locale),
            )
            for row in rows
        ],
    )
    return ToolResult(text=table, link=dashboard_link("sales/quotes", "View all quotes"))


async def get_quote_conversion(ctx: ExecutionContext, params: GetQuoteConversionParams) -> ToolResult:
    stats = await sales_queries.quote_conversion_stats(ctx.tenant_id, PERIOD_DAYS[params.period])
    total = int(to_float(stats.get("total_quotes")))
    if total == 0:
        return ToolResult(text=f"No quotes created in the last {params.period}.")

    accepted = int(to_float(stats.get("accepted")))
    rejected = int(to_float(stats.get("rejected")))
    decided = accepted + rejected
    table = markdown_table(
        ["Metric", "Value"],
        [
            ("Total Quotes", total),
            ("Accepted", accepted),
            ("Rejected", rejected),
            ("Expired", int(to_float(stats.get("expired")))),
            ("Pending", int(to_float(stats.get("pending")))),
            ("Conversion Rate", format_percent(accepted, total)),
            ("Win Rate (decided)", format_percent(accepted, decided)),
            ("Accepted Value", format_money(stats.get("accepted_value"), ctx.base_currency, ctx.locale)),
            ("Total Quoted", format_money(stats.get("total_value"), ctx.base_currency, ctx.locale)),
        ],
    )
    return ToolResult(
        text=f"## Quote Conversion ({params.period})\n\n{table}",
        link=dashboard_link("sales/quotes", "View quotes"),
    )


async def get_products(ctx: ExecutionContext, params: GetProductsParams) -> ToolResult:
    rows = await sales_queries.list_products(
        ctx.tenant_id, page_size=params.pageSize, search=params.search, category=params.category
    )
    if not rows:
        return ToolResult(text="No products found matching your criteria.")

    def margin(row) -> str:
        price = to_float(row.get("unit_price"))
        cost = row.get("cost_price")
        if cost is None or price == 0:
            return "-"
        return format_percent(price - to_float(cost), price)

    table = markdown_table(
        ["Product", "SKU", "Category", "Price", "Margin"],
        [
            (
                row["name"],
                row.get("sku") or "-",
                row.get("category_name") or "-",
                format_money(row.get("unit_price"), row.get("currency") or ctx.base_currency, ctx.locale),
                margin(row),
            )
            for row in rows
        ],
    )
    return ToolResult(text=table, link=dashboard_link("sales/products", "View products"))


async def get_product_categories(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    rows = await sales_queries.product_categories(ctx.tenant_id)
    if not rows:
        return ToolResult(text="No product categories defined.")
    table = markdown_table(
        ["Category", "Products"],
        [(row["name"], int(to_float(row["product_count"]))) for row in rows],
    )
    return ToolResult(text=table)


TOOLS = [
    ToolDefinition(
        name="getQuotes",
        description="Retrieve and filter quotes (offers) with status filtering",
        group=ToolGroup.SALES,
        parameters_model=GetQuotesParams,
        executor=get_quotes,
        failure_message="Failed to retrieve quotes",
    ),
    ToolDefinition(
        name="getQuoteConversion",
        description="Quote to deal conversion statistics for a period",
        group=ToolGroup.SALES,
        parameters_model=GetQuoteConversionParams,
        executor=get_quote_conversion,
        failure_message="Failed to calculate quote conversion",
    ),
    ToolDefinition(
        name="getProducts",
        description="List products and services with prices and margins",
        group=ToolGroup.SALES,
        parameters_model=GetProductsParams,
        executor=get_products,
        failure_message="Failed to retrieve products",
    ),
    ToolDefinition(
        name="getProductCategories",
        description="List product categories with product counts",
        group=ToolGroup.SALES,
        parameters_model=EmptyParams,
        executor=get_product_categories,
        failure_message="Failed to retrieve product categories",
    ),
]
