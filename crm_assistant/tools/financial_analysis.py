"""Financial analysis tools over completed payments."""

from datetime import timedelta
from typing import Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import finance as finance_queries
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import EmptyParams, ToolDefinition, ToolGroup, ToolResult
from crm_assistant.tools import analysis
from crm_assistant.tools.formatting import (
    PERIOD_DAYS,
    dashboard_link,
    format_date,
    format_money,
    format_percent,
    markdown_table,
    mean,
    period_bounds,
    previous_period_bounds,
    to_float,
)


class GetBurnRateParams(BaseModel):
    months: int = Field(6, ge=1, le=24, description="Number of months to analyze")


class GetRunwayParams(BaseModel):
    growthRate: Optional[float] = Field(
        None, ge=-1, le=10, description="Expected monthly income growth rate (0.1 for 10%)"
    )
    includeScenarios: bool = Field(True, description="Include best/worst case scenarios")


class GetCashFlowParams(BaseModel):
    period: Literal["week", "month", "quarter", "year"] = Field("month", description="Analysis period")


class GetRevenueParams(BaseModel):
    months: int = Field(12, ge=1, le=24, description="Number of months to analyze")
    groupBy: Literal["month", "client", "category"] = Field("month", description="How to group revenue")


class GetExpensesParams(BaseModel):
    months: int = Field(6, ge=1, le=24, description="Number of months to analyze")
    groupBy: Literal["category", "vendor", "month"] = Field("category", description="How to group expenses")


class GetForecastParams(BaseModel):
    forecastMonths: int = Field(3, ge=1, le=12, description="Number of months to forecast")
    scenario: Literal["conservative", "moderate", "optimistic"] = Field("moderate", description="Forecast scenario")
    includeSeasonality: bool = Field(True, description="Account for seasonal patterns")


class GetProfitLossParams(BaseModel):
    period: Literal["month", "quarter", "year", "ytd"] = Field("month", description="Reporting period")


class GetSpendingInsightsParams(BaseModel):
    months: int = Field(3, ge=1, le=12, description="Number of months to analyze")


def _months_label(months: Optional[int]) -> str:
    return "∞ (not burning cash)" if months is None else f"{months} months"


def _change(current: float, previous: float) -> str:
    if previous <= 0:
        return "-"
    change = (current - previous) / previous * 100
    return f"{'+' if change > 0 else ''}{change:.1f}%"


async def get_burn_rate(ctx: ExecutionContext, params: GetBurnRateParams) -> ToolResult:
    monthly = await finance_queries.monthly_totals(ctx.tenant_id, params.months)
    if not monthly:
        return ToolResult(text=f"No payment data found for the last {params.months} months.")
    balance = await finance_queries.current_balance(ctx.tenant_id)
    summary = analysis.burn_rate_summary(monthly, balance)
    categories = await finance_queries.expenses_grouped(ctx.tenant_id, params.months, "category")

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    metrics = markdown_table(
        ["Metric", "Value"],
        [
            ("Average Monthly Burn", money(summary.avg_burn)),
            ("Average Monthly Expenses", money(summary.avg_expenses)),
            ("Average Monthly Income", money(summary.avg_income)),
            ("Burn Trend", f"{summary.trend_percent:+.1f}%"),
            ("Current Balance", money(balance)),
            ("Runway", _months_label(summary.runway)),
        ],
    )
    breakdown = markdown_table(
        ["Month", "Expenses", "Income", "Net Burn"],
        [
            (m["month"], money(m["expenses"]), money(m["income"]), money(to_float(m["expenses"]) - to_float(m["income"])))
            for m in monthly[:6]
        ],
    )
    text = f"## Burn Rate Analysis\n\n**Period:** Last {params.months} months\n\n{metrics}\n\n### Monthly Breakdown\n{breakdown}"
    if categories:
        total = sum(to_float(c["amount"]) for c in categories)
        text += "\n\n### Top Expense Categories\n" + markdown_table(
            ["Category", "Total", "% of Expenses"],
            [(c["label"], money(c["amount"]), format_percent(c["amount"], total)) for c in categories[:5]],
        )
    return ToolResult(text=text)


async def get_runway(ctx: ExecutionContext, params: GetRunwayParams) -> ToolResult:
    monthly = await finance_queries.monthly_totals(ctx.tenant_id, 6)
    if not monthly:
        return ToolResult(text="Not enough payment history to estimate runway.")
    balance = await finance_queries.current_balance(ctx.tenant_id)
    expenses = [to_float(m["expenses"]) for m in monthly]
    income = [to_float(m["income"]) for m in monthly]
    scenarios = analysis.runway_scenarios(balance, expenses, income, params.growthRate)
    base = scenarios[0]

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    position = markdown_table(
        ["Metric", "Value"],
        [
            ("Current Balance", money(balance)),
            ("Avg Monthly Expenses", money(mean(expenses))),
            ("Avg Monthly Income", money(mean(income))),
            ("Net Monthly Burn", money(mean(expenses) - mean(income))),
            ("Expense Volatility", money(analysis.std_dev(expenses))),
        ],
    )
    text = f"## Financial Runway Analysis\n\n### Current Position\n{position}\n\n### Runway Estimate\n**{_months_label(base.months)}**"
    if base.months is not None and base.months <= 12:
        runout = ctx.current_datetime.date() + timedelta(days=30 * base.months)
        text += f"\n\n⚠️ Projected to run out around {format_date(runout, ctx.locale)}"
    if params.includeScenarios:
        text += "\n\n### Scenario Analysis\n" + markdown_table(
            ["Scenario", "Runway", "Description"],
            [(s.name, _months_label(s.months), s.description) for s in scenarios],
        )
    recurring = await finance_queries.recurring_expenses(ctx.tenant_id, 6)
    if recurring:
        text += "\n\n### Top Recurring Expenses\n" + markdown_table(
            ["Expense", "Avg Amount", "Frequency"],
            [(r["label"], money(r["avg_amount"]), f"{r['occurrences']}x/6mo") for r in recurring[:5]],
        )
    return ToolResult(text=text)


async def get_cash_flow(ctx: ExecutionContext, params: GetCashFlowParams) -> ToolResult:
    days = PERIOD_DAYS[params.period]
    end = ctx.current_datetime.date() + timedelta(days=1)
    start = end - timedelta(days=days)
    previous_start = start - timedelta(days=days)

    current = await finance_queries.period_totals(ctx.tenant_id, start, end)
    previous = await finance_queries.period_totals(ctx.tenant_id, previous_start, start)
    if current["count"] == 0:
        return ToolResult(text=f"No cash movements recorded in the last {params.period}.")
    inflows = await finance_queries.top_counterparties(ctx.tenant_id, start, end, inflow=True)
    outflows = await finance_queries.top_counterparties(ctx.tenant_id, start, end, inflow=False)

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    net = current["income"] - current["expenses"]
    summary = markdown_table(
        ["Metric", "Current", "Previous", "Change"],
        [
            ("Inflows", money(current["income"]), money(previous["income"]), _change(current["income"], previous["income"])),
            ("Outflows", money(current["expenses"]), money(previous["expenses"]), _change(current["expenses"], previous["expenses"])),
            ("Net Flow", money(net), money(previous["income"] - previous["expenses"]), "-"),
        ],
    )
    text = f"## Cash Flow Analysis ({params.period})\n\n{summary}"
    if current["expenses"] > 0:
        text += f"\n\n**Inflow/Outflow Ratio:** {current['income'] / current['expenses']:.2f}"
    if inflows:
        text += "\n\n### Top Inflow Sources\n" + markdown_table(
            ["Source", "Amount", "Share"],
            [(r["label"], money(r["amount"]), format_percent(r["amount"], current["income"], 0)) for r in inflows],
        )
    if outflows:
        text += "\n\n### Top Outflow Destinations\n" + markdown_table(
            ["Destination", "Amount", "Share"],
            [(r["label"], money(r["amount"]), format_percent(r["amount"], current["expenses"], 0)) for r in outflows],
        )
    return ToolResult(text=text)


async def get_revenue(ctx: ExecutionContext, params: GetRevenueParams) -> ToolResult:
    rows = await finance_queries.revenue_grouped(ctx.tenant_id, params.months, params.groupBy)
    if not rows:
        return ToolResult(text=f"No revenue recorded in the last {params.months} months.")
    total = sum(to_float(r["amount"]) for r in rows)
    table = markdown_table(
        [params.groupBy.capitalize(), "Payments", "Revenue", "Share"],
        [
            (r["label"], r["count"], format_money(r["amount"], ctx.base_currency, ctx.locale), format_percent(r["amount"], total))
            for r in rows
        ],
    )
    text = (
        f"## Revenue by {params.groupBy} (last {params.months} months)\n\n{table}\n\n"
        f"**Total Revenue:** {format_money(total, ctx.base_currency, ctx.locale)}"
    )
    if params.groupBy == "month":
        text += f" | **Monthly Average:** {format_money(total / len(rows), ctx.base_currency, ctx.locale)}"
    return ToolResult(text=text, link=dashboard_link("finance/revenue", "Open revenue report"))


async def get_expenses(ctx: ExecutionContext, params: GetExpensesParams) -> ToolResult:
    rows = await finance_queries.expenses_grouped(ctx.tenant_id, params.months, params.groupBy)
    if not rows:
        return ToolResult(text=f"No expenses recorded in the last {params.months} months.")
    total = sum(to_float(r["amount"]) for r in rows)
    table = markdown_table(
        [params.groupBy.capitalize(), "Payments", "Amount", "Share"],
        [
            (r["label"], r["count"], format_money(r["amount"], ctx.base_currency, ctx.locale), format_percent(r["amount"], total))
            for r in rows
        ],
    )
    return ToolResult(
        text=(
            f"## Expenses by {params.groupBy} (last {params.months} months)\n\n{table}\n\n"
            f"**Total Expenses:** {format_money(total, ctx.base_currency, ctx.locale)} | "
            f"**Monthly Average:** {format_money(total / params.months, ctx.base_currency, ctx.locale)}"
        ),
        link=dashboard_link("finance/expenses", "Open expenses report"),
    )


async def get_forecast(ctx: ExecutionContext, params: GetForecastParams) -> ToolResult:
    history = await finance_queries.monthly_totals(ctx.tenant_id, 12)
    if not history:
        return ToolResult(text="Not enough payment history to build a forecast.")
    balance = await finance_queries.current_balance(ctx.tenant_id)
    forecast = analysis.build_forecast(
        history,
        balance,
        params.forecastMonths,
        params.scenario,
        ctx.current_datetime.date(),
        include_seasonality=params.includeSeasonality,
    )

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    table = markdown_table(
        ["Month", "Revenue", "Expenses", "Net", "Balance", "Confidence"],
        [(f.month, money(f.revenue), money(f.expenses), money(f.net), money(f.balance), f"{f.confidence:.0%}") for f in forecast],
    )
    ending = forecast[-1].balance
    text = (
        f"## Financial Forecast ({params.scenario})\n\n"
        f"**Current Balance:** {money(balance)} | **Projected Ending Balance:** {money(ending)}\n\n{table}"
    )
    below_zero = next((f.month for f in forecast if f.balance < 0), None)
    if below_zero:
        text += f"\n\n⚠️ Balance is projected to turn negative in {below_zero}."
    text += f"\n\n*Based on {len(history)} months of history.*"
    return ToolResult(text=text)


async def get_profit_loss(ctx: ExecutionContext, params: GetProfitLossParams) -> ToolResult:
    today = ctx.current_datetime.date()
    start, end = period_bounds(params.period, today)
    previous_start, previous_end = previous_period_bounds(params.period, today)
    current = await finance_queries.period_totals(ctx.tenant_id, start, end)
    previous = await finance_queries.period_totals(ctx.tenant_id, previous_start, previous_end)
    categories = await finance_queries.period_categories(ctx.tenant_id, start, end)

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    profit = current["income"] - current["expenses"]
    previous_profit = previous["income"] - previous["expenses"]
    statement = markdown_table(
        ["Line", "Current", "Previous", "Change"],
        [
            ("Revenue", money(current["income"]), money(previous["income"]), _change(current["income"], previous["income"])),
            ("Expenses", money(current["expenses"]), money(previous["expenses"]), _change(current["expenses"], previous["expenses"])),
            ("**Net Profit**", f"**{money(profit)}**", money(previous_profit), _change(profit, previous_profit)),
            ("Profit Margin", format_percent(profit, current["income"]), format_percent(previous_profit, previous["income"]), "-"),
        ],
    )
    text = (
        f"## Profit & Loss ({params.period})\n\n"
        f"{format_date(start, ctx.locale)} - {format_date(end - timedelta(days=1), ctx.locale)}\n\n{statement}"
    )
    expense_categories = sorted(
        (c for c in categories if to_float(c["expenses"]) > 0), key=lambda c: to_float(c["expenses"]), reverse=True
    )
    if expense_categories:
        text += "\n\n### Expenses by Category\n" + markdown_table(
            ["Category", "Amount", "Share"],
            [(c["category"], money(c["expenses"]), format_percent(c["expenses"], current["expenses"])) for c in expense_categories[:8]],
        )
    return ToolResult(text=text)


async def get_financial_health(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    monthly = await finance_queries.monthly_totals(ctx.tenant_id, 6)
    if not monthly:
        return ToolResult(text="Not enough payment history to assess financial health.")
    balance = await finance_queries.current_balance(ctx.tenant_id)
    clients = await finance_queries.revenue_grouped(ctx.tenant_id, 6, "client")
    recurring = await finance_queries.recurring_expense_total(ctx.tenant_id)
    report = analysis.financial_health(
        monthly,
        balance,
        top_client_revenue=to_float(clients[0]["amount"]) if clients else 0.0,
        total_client_revenue=sum(to_float(c["amount"]) for c in clients),
        recurring_expenses=recurring,
    )
    table = markdown_table(
        ["Metric", "Score", "Status", "Details"],
        [(m.name, f"{m.score}/{m.max_score}", m.status, m.details) for m in report.metrics],
    )
    text = f"## Financial Health Report\n\n**Overall: {report.overall}** ({report.total}/100)\n\n{table}"
    if report.risks:
        text += "\n\n### Risk Factors\n" + "\n".join(f"- {risk}" for risk in report.risks)
    return ToolResult(text=text)


async def get_spending_insights(ctx: ExecutionContext, params: GetSpendingInsightsParams) -> ToolResult:
    expenses = await finance_queries.expense_transactions(ctx.tenant_id, params.months)
    if not expenses:
        return ToolResult(text=f"No expenses recorded in the last {params.months} months.")
    insights = analysis.spending_insights(expenses, params.months, ctx.current_datetime.date())

    def money(value) -> str:
        return format_money(value, ctx.base_currency, ctx.locale)

    total = sum(insights.category_totals.values())
    text = (
        f"## Spending Insights (last {params.months} months)\n\n"
        f"**Total Spending:** {money(total)} | **Spending Velocity:** {insights.velocity_change:+.1f}% "
        "(last 4 weeks vs earliest 4 weeks)\n\n"
        + markdown_table(
            ["Category", "Total", "Monthly Avg", "Share"],
            [
                (category, money(amount), money(amount / params.months), format_percent(amount, total))
                for category, amount in list(insights.category_totals.items())[:8]
            ],
        )
    )
    if insights.anomalies:
        text += "\n\n### Unusual Transactions\n" + markdown_table(
            ["Date", "Merchant", "Amount", "Category Avg"],
            [
                (format_date(a["date"], ctx.locale), a["merchant"], money(a["amount"]), money(a["expected"]))
                for a in insights.anomalies[:5]
            ],
        )
    if insights.duplicates:
        text += "\n\n### Possible Duplicate Charges\n" + "\n".join(
            f"- {d['first']['merchant']}: {money(d['first']['amount'])} on {format_date(d['first']['date'], ctx.locale)}"
            for d in insights.duplicates[:5]
        )
    if insights.opportunities:
        text += "\n\n### Savings Opportunities\n" + "\n".join(f"- {o}" for o in insights.opportunities)
    return ToolResult(text=text)


TOOLS = [
    ToolDefinition(
        name="getBurnRate",
        description="Calculate monthly burn rate, spending trends and runway. Use to understand how fast money is being spent.",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetBurnRateParams,
        executor=get_burn_rate,
        failure_message="Failed to calculate burn rate",
    ),
    ToolDefinition(
        name="getRunway",
        description="Calculate financial runway (months until funds run out) with best/worst case scenarios",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetRunwayParams,
        executor=get_runway,
        failure_message="Failed to calculate runway",
    ),
    ToolDefinition(
        name="getCashFlow",
        description="Analyze cash inflows, outflows and net flow compared with the previous period",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetCashFlowParams,
        executor=get_cash_flow,
        failure_message="Failed to analyze cash flow",
    ),
    ToolDefinition(
        name="getRevenue",
        description="Revenue breakdown by month, client or category",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetRevenueParams,
        executor=get_revenue,
        failure_message="Failed to retrieve revenue",
    ),
    ToolDefinition(
        name="getExpenses",
        description="Expense breakdown by category, vendor or month",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetExpensesParams,
        executor=get_expenses,
        failure_message="Failed to retrieve expenses",
    ),
    ToolDefinition(
        name="getForecast",
        description="Forecast revenue, expenses and cash position under a conservative, moderate or optimistic scenario",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetForecastParams,
        executor=get_forecast,
        failure_message="Failed to generate forecast",
    ),
    ToolDefinition(
        name="getProfitLoss",
        description="Profit and loss statement for a period compared with the previous one",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetProfitLossParams,
        executor=get_profit_loss,
        failure_message="Failed to build profit and loss statement",
    ),
    ToolDefinition(
        name="getFinancialHealth",
        description="Financial health score covering profitability, liquidity, revenue diversification and growth",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=EmptyParams,
        executor=get_financial_health,
        failure_message="Failed to assess financial health",
    ),
    ToolDefinition(
        name="getSpendingInsights",
        description="Spending patterns, unusual transactions, duplicate charges and savings opportunities",
        group=ToolGroup.FINANCIAL_ANALYSIS,
        parameters_model=GetSpendingInsightsParams,
        executor=get_spending_insights,
        failure_message="Failed to analyze spending",
    ),
]
