"""Research tools: product comparison, affordability, market data and pricing."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import finance as finance_queries
from crm_assistant.data import operations as operations_queries
from crm_assistant.data import research as research_queries
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import ToolDefinition, ToolGroup, ToolResult
from crm_assistant.tools import analysis
from crm_assistant.tools.formatting import (
    format_money,
    format_percent,
    markdown_table,
    mean,
    to_float,
)


class CompareProductsParams(BaseModel):
    productIds: Optional[List[str]] = Field(None, max_length=10, description="Product IDs to compare")
    category: Optional[str] = Field(None, description="Product category to compare within")


class AnalyzeAffordabilityParams(BaseModel):
    purchaseAmount: float = Field(..., gt=0, description="The amount of the potential purchase")
    purchaseDescription: Optional[str] = Field(None, description="What is being purchased")
    isRecurring: bool = Field(False, description="Whether this is a monthly recurring expense")


class MarketResearchParams(BaseModel):
    topic: Optional[Literal["customers", "products", "revenue", "industry"]] = Field(
        None, description="Research topic; all topics when omitted"
    )


class PriceComparisonParams(BaseModel):
    productId: Optional[str] = Field(None, description="Product ID to analyze pricing for")
    category: Optional[str] = Field(None, description="Category to analyze pricing across")


def _margin(price, cost) -> str:
    if cost is None or to_float(price) == 0:
        return "-"
    return format_percent(to_float(price) - to_float(cost), price)


async def compare_products(ctx: ExecutionContext, params: CompareProductsParams) -> ToolResult:
    rows = await research_queries.products_for_comparison(
        ctx.tenant_id, product_ids=params.productIds, category=params.category
    )
    if not rows:
        return ToolResult(text="No products found to compare.")

    def money(value, row) -> str:
        return format_money(value, row.get("currency") or ctx.base_currency, ctx.locale)

    table = markdown_table(
        ["Product", "Category", "Price", "Cost", "Margin", "Orders", "Revenue"],
        [
            (
                r["name"],
                r.get("category_name") or "-",
                money(r.get("unit_price"), r),
                money(r["cost_price"], r) if r.get("cost_price") is not None else "-",
                _margin(r.get("unit_price"), r.get("cost_price")),
                int(to_float(r.get("times_ordered"))),
                money(r.get("total_revenue"), r),
            )
            for r in rows
        ],
    )
    best = max(rows, key=lambda r: to_float(r.get("total_revenue")))
    text = f"## Product Comparison\n\n{table}"
    if to_float(best.get("total_revenue")) > 0:
        text += f"\n\n**Top performer:** {best['name']} ({money(best['total_revenue'], best)} revenue)"
    return ToolResult(text=text)


async def analyze_affordability(ctx: ExecutionContext, params: AnalyzeAffordabilityParams) -> ToolResult:
    monthly = await finance_queries.monthly_totals(ctx.tenant_id, 3)
    balance = await finance_queries.current_balance(ctx.tenant_id)
    receivables = await operations_queries.receivables_summary(ctx.tenant_id)
    income = mean([to_float(m["income"]) for m in monthly])
    expenses = mean([to_float(m["expenses"]) for m in monthly])
    result = analysis.affordability(params.purchaseAmount, balance, income, income - expenses)

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    subject = f" for {params.purchaseDescription}" if params.purchaseDescription else ""
    table = markdown_table(
        ["Metric", "Value"],
        [
            ("Purchase Amount", money(params.purchaseAmount)),
            ("Current Balance", money(balance)),
            ("Avg Monthly Income", money(income)),
            ("Avg Monthly Expenses", money(expenses)),
            ("Avg Monthly Surplus", money(income - expenses)),
            ("Pending Receivables", money(receivables.get("outstanding"))),
            ("Share of Balance", f"{result.share_of_balance:.1f}%"),
            ("Share of Monthly Income", f"{result.share_of_income:.1f}%"),
            (
                "Months of Surplus Needed",
                "-" if result.months_to_save is None else f"{result.months_to_save:.1f}",
            ),
        ],
    )
    text = (
        f"## Affordability Analysis{subject}\n\n**Affordability: {result.rating}**\n\n{table}\n\n"
        f"**Recommendation:** {result.recommendation}"
    )
    if params.isRecurring:
        surplus = income - expenses
        impact = f"{params.purchaseAmount / surplus * 100:.1f}% of the monthly surplus" if surplus > 0 else "more than the monthly surplus"
        text += (
            f"\n\n### Recurring Cost\nAnnual cost: {money(params.purchaseAmount * 12)}. "
            f"This uses {impact}."
        )
    return ToolResult(text=text)


async def market_research(ctx: ExecutionContext, params: MarketResearchParams) -> ToolResult:
    topic = params.topic
    sections = ["## Market Research Report"]

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    if topic in (None, "customers", "industry"):
        industries = await research_queries.customers_by_industry(ctx.tenant_id)
        if industries:
            sections.append("### Customer Distribution by Industry\n" + markdown_table(
                ["Industry", "Customers", "Revenue"],
                [(r["label"], r["count"], money(r["revenue"])) for r in industries],
            ))
    if topic in (None, "revenue"):
        trends = await research_queries.monthly_invoicing(ctx.tenant_id, 12)
        if trends:
            block = "### Monthly Revenue Trends\n" + markdown_table(
                ["Month", "Invoices", "Revenue", "Customers"],
                [(r["label"], r["count"], money(r["revenue"]), r["unique_customers"]) for r in trends[:6]],
            )
            if len(trends) >= 2 and to_float(trends[1]["revenue"]) > 0:
                growth = (to_float(trends[0]["revenue"]) - to_float(trends[1]["revenue"])) / to_float(trends[1]["revenue"]) * 100
                block += f"\n\n**Month-over-Month Growth:** {growth:+.1f}%"
            sections.append(block)
    if topic in (None, "products"):
        products = await research_queries.top_selling_products(ctx.tenant_id, limit=5)
        if products:
            sections.append("### Top Performing Products\n" + markdown_table(
                ["Product", "Orders", "Units", "Revenue"],
                [(r["label"], r["count"], f"{to_float(r['units_sold']):g}", money(r["revenue"])) for r in products],
            ))

    if len(sections) == 1:
        return ToolResult(text="Not enough internal data for market research yet.")
    return ToolResult(text="\n\n".join(sections))


async def price_comparison(ctx: ExecutionContext, params: PriceComparisonParams) -> ToolResult:
    rows = await research_queries.price_analysis(ctx.tenant_id, product_id=params.productId, category=params.category)
    if not rows:
        return ToolResult(text="No products found for price analysis.")

    def money(value, row) -> str:
        return format_money(value, row.get("currency") or ctx.base_currency, ctx.locale)

    def realised(row) -> str:
        list_price = to_float(row.get("unit_price"))
        if list_price == 0 or not to_float(row.get("order_count")):
            return "-"
        return f"{(to_float(row['avg_sold_price']) - list_price) / list_price * 100:+.1f}%"

    table = markdown_table(
        ["Product", "List Price", "Avg Quoted", "Avg Sold", "vs List", "Margin"],
        [
            (
                r["name"],
                money(r.get("unit_price"), r),
                money(r.get("avg_quoted_price"), r),
                money(r.get("avg_sold_price"), r),
                realised(r),
                _margin(r.get("unit_price"), r.get("cost_price")),
            )
            for r in rows
        ],
    )
    prices = [to_float(r.get("unit_price")) for r in rows]
    text = f"## Price Comparison\n\n{table}"
    if len(prices) > 1:
        text += (
            f"\n\n**Range:** {format_money(min(prices), ctx.base_currency, ctx.locale)} - "
            f"{format_money(max(prices), ctx.base_currency, ctx.locale)} | "
            f"**Average:** {format_money(mean(prices), ctx.base_currency, ctx.locale)}"
        )
    return ToolResult(text=text)


TOOLS = [
    ToolDefinition(
        name="compareProducts",
        description="Compare products by price, cost, margin and sales performance",
        group=ToolGroup.RESEARCH,
        parameters_model=CompareProductsParams,
        executor=compare_products,
        failure_message="Failed to compare products",
    ),
    ToolDefinition(
        name="analyzeAffordability",
        description="Analyze whether a purchase fits the budget and cash position. Use before major purchasing decisions.",
        group=ToolGroup.RESEARCH,
        parameters_model=AnalyzeAffordabilityParams,
        executor=analyze_affordability,
        failure_message="Failed to analyze affordability",
    ),
    ToolDefinition(
        name="marketResearch",
        description="Customer, industry, revenue and product insights from internal data",
        group=ToolGroup.RESEARCH,
        parameters_model=MarketResearchParams,
        executor=market_research,
        failure_message="Failed to run market research",
    ),
    ToolDefinition(
        name="priceComparison",
        description="Compare list, quoted and sold prices across products for pricing decisions",
        group=ToolGroup.RESEARCH,
        parameters_model=PriceComparisonParams,
        executor=price_comparison,
        failure_message="Failed to compare prices",
    ),
]
