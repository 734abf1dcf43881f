"""
Pure financial computations behind the analysis tools.

Nothing here touches the database; the tool executors fetch rows and hand
plain numbers to these functions so the arithmetic is testable on its own.
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from crm_assistant.tools.formatting import add_months, mean, to_float

SCENARIO_MULTIPLIERS = {
    "conservative": {"revenue": 0.9, "expenses": 1.1, "growth": 0.5},
    "moderate": {"revenue": 1.0, "expenses": 1.0, "growth": 1.0},
    "optimistic": {"revenue": 1.1, "expenses": 0.95, "growth": 1.5},
}

BEST_CASE_EXPENSE_FACTOR = 0.9


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    avg = mean(list(values))
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def recent_vs_older_change(values_recent_first: Sequence[float], window: int = 3) -> float:
    """
    Relative change between the average of the most recent `window` values
    and the oldest `window` values, as a fraction (0.25 == +25%).
    """
    if not values_recent_first:
        return 0.0
    size = min(window, len(values_recent_first))
    recent = sum(values_recent_first[:size]) / size
    older = sum(values_recent_first[-size:]) / size
    if older == 0:
        return 0.0
    return (recent - older) / abs(older)


def runway_months(balance: float, monthly_burn: float) -> Optional[int]:
    """Whole months until the balance is exhausted; None when not burning."""
    if monthly_burn <= 0:
        return None
    return max(0, math.floor(balance / monthly_burn))


@dataclass
class BurnRateSummary:
    avg_burn: float
    avg_expenses: float
    avg_income: float
    trend_percent: float
    runway: Optional[int]


def burn_rate_summary(monthly: List[Dict[str, Any]], balance: float) -> BurnRateSummary:
    """`monthly` rows carry income and expenses, most recent month first."""
    burns = [to_float(m["expenses"]) - to_float(m["income"]) for m in monthly]
    avg_burn = mean(burns)
    trend = recent_vs_older_change(burns) * 100 if len(burns) >= 2 else 0.0
    return BurnRateSummary(
        avg_burn=avg_burn,
        avg_expenses=mean([to_float(m["expenses"]) for m in monthly]),
        avg_income=mean([to_float(m["income"]) for m in monthly]),
        trend_percent=trend,
        runway=runway_months(balance, avg_burn),
    )


@dataclass
class RunwayScenario:
    name: str
    months: Optional[int]
    description: str


def runway_scenarios(
    balance: float,
    monthly_expenses: List[float],
    monthly_income: List[float],
    growth_rate: Optional[float] = None,
) -> List[RunwayScenario]:
    avg_expenses = mean(monthly_expenses)
    avg_income = mean(monthly_income)
    volatility = std_dev(monthly_expenses)

    scenarios = [
        RunwayScenario("Base Case", runway_months(balance, avg_expenses - avg_income), "Current spending patterns continue"),
        RunwayScenario(
            "Best Case",
            runway_months(balance, avg_expenses * BEST_CASE_EXPENSE_FACTOR - avg_income),
            "10% expense reduction",
        ),
        RunwayScenario(
            "Worst Case",
            runway_months(balance, avg_expenses + volatility - avg_income),
            "Expenses one standard deviation higher",
        ),
    ]
    if growth_rate is not None:
        scenarios.append(RunwayScenario(
            "Growth Scenario",
            runway_months(balance, avg_expenses - avg_income * (1 + growth_rate)),
            f"{growth_rate * 100:.0f}% income growth",
        ))
    return scenarios


@dataclass
class ForecastMonth:
    month: str
    revenue: float
    expenses: float
    net: float
    balance: float
    confidence: float


def build_forecast(
    history: List[Dict[str, Any]],
    current_balance: float,
    forecast_months: int,
    scenario: str,
    today: date,
    include_seasonality: bool = True,
) -> List[ForecastMonth]:
    """
    Project revenue, expenses and balance month by month.

    `history` rows carry month_num, income and expenses, most recent first.
    Growth compares the last three months with the oldest three and is only
    applied with at least six months of history.
    """
    revenues = [to_float(h["income"]) for h in history]
    expenses = [to_float(h["expenses"]) for h in history]
    avg_revenue = mean(revenues)
    avg_expenses = mean(expenses)

    revenue_growth = expense_growth = 0.0
    if len(history) >= 6:
        revenue_growth = recent_vs_older_change(revenues)
        expense_growth = recent_vs_older_change(expenses)

    seasonality: Dict[int, Dict[str, float]] = {}
    if include_seasonality and len(history) >= 6:
        by_month: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for h in history:
            by_month[int(h["month_num"])].append(h)
        for month_num, rows in by_month.items():
            seasonality[month_num] = {
                "revenue": mean([to_float(r["income"]) for r in rows]) / avg_revenue if avg_revenue else 1.0,
                "expenses": mean([to_float(r["expenses"]) for r in rows]) / avg_expenses if avg_expenses else 1.0,
            }

    multiplier = SCENARIO_MULTIPLIERS[scenario]
    first_of_month = today.replace(day=1)
    balance = current_balance
    forecast = []
    for i in range(1, forecast_months + 1):
        month_start = add_months(first_of_month, i)
        revenue = avg_revenue * (1 + revenue_growth * multiplier["growth"] * (i / 12)) * multiplier["revenue"]
        cost = avg_expenses * (1 + expense_growth * multiplier["growth"] * (i / 12)) * multiplier["expenses"]
        factors = seasonality.get(month_start.month)
        if factors:
            revenue *= factors["revenue"]
            cost *= factors["expenses"]
        balance += revenue - cost
        forecast.append(ForecastMonth(
            month=month_start.strftime("%Y-%m"),
            revenue=revenue,
            expenses=cost,
            net=revenue - cost,
            balance=balance,
            confidence=max(0.5, 1 - i * 0.08),
        ))
    return forecast


@dataclass
class HealthMetric:
    name: str
    score: int
    status: str
    details: str
    max_score: int = 25


@dataclass
class HealthReport:
    metrics: List[HealthMetric]
    risks: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(m.score for m in self.metrics)

    @property
    def percentage(self) -> float:
        maximum = sum(m.max_score for m in self.metrics)
        return self.total / maximum * 100 if maximum else 0.0

    @property
    def overall(self) -> str:
        pct = self.percentage
        if pct >= 80:
            return "Excellent"
        if pct >= 65:
            return "Good"
        if pct >= 50:
            return "Fair"
        if pct >= 35:
            return "Poor"
        return "Critical"


def _tier(value: float, thresholds: Sequence[float], scores: Sequence[int], higher_is_better: bool = True):
    statuses = ("excellent", "good", "fair", "poor", "critical")
    for index, threshold in enumerate(thresholds):
        if (value >= threshold) if higher_is_better else (value <= threshold):
            return scores[index], statuses[index]
    return scores[-1], statuses[-1]


def financial_health(
    monthly: List[Dict[str, Any]],
    balance: float,
    top_client_revenue: float,
    total_client_revenue: float,
    recurring_expenses: float,
) -> HealthReport:
    """Four metrics worth 25 points each; `monthly` is most recent first."""
    incomes = [to_float(m["income"]) for m in monthly]
    expenses = [to_float(m["expenses"]) for m in monthly]
    avg_income = mean(incomes)
    avg_expenses = mean(expenses)
    avg_net = avg_income - avg_expenses

    margin = avg_net / avg_income * 100 if avg_income > 0 else 0.0
    profit_score, profit_status = _tier(margin, (20, 10, 0, -10), (25, 20, 15, 8, 0))

    runway = balance / abs(avg_net) if avg_net < 0 else math.inf
    if avg_net >= 0:
        liquidity_score, liquidity_status = 25, "excellent"
    else:
        liquidity_score, liquidity_status = _tier(runway, (12, 6, 3, 1), (25, 20, 12, 5, 0))

    concentration = top_client_revenue / total_client_revenue if total_client_revenue > 0 else 0.0
    diversification_score, diversification_status = _tier(
        concentration, (0.2, 0.35, 0.5, 0.7), (25, 20, 15, 8, 0), higher_is_better=False
    )

    growth = recent_vs_older_change(incomes) * 100 if len(incomes) >= 3 else 0.0
    volatility = std_dev(expenses) / avg_expenses if avg_expenses > 0 else 0.0
    penalty = -5 if volatility > 0.3 else -2 if volatility > 0.15 else 0
    growth_score, growth_status = _tier(growth, (20, 10, 0, -10), (25, 20, 15, 10, 5))
    growth_score = max(0, growth_score + penalty)

    report = HealthReport(metrics=[
        HealthMetric("Profitability", profit_score, profit_status, f"{margin:.1f}% profit margin"),
        HealthMetric(
            "Liquidity",
            liquidity_score,
            liquidity_status,
            "Positive cash flow" if runway == math.inf else f"{math.floor(runway)} months runway",
        ),
        HealthMetric(
            "Revenue Diversification",
            diversification_score,
            diversification_status,
            f"Top client: {concentration * 100:.0f}% of revenue",
        ),
        HealthMetric(
            "Growth & Stability",
            growth_score,
            growth_status,
            f"{growth:.1f}% growth, {volatility * 100:.0f}% expense volatility",
        ),
    ])

    if runway < 6:
        report.risks.append("Less than 6 months of runway at the current burn")
    if concentration > 0.5:
        report.risks.append("More than half of revenue comes from a single client")
    if avg_expenses > 0 and recurring_expenses / avg_expenses > 0.6:
        report.risks.append("Recurring costs exceed 60% of monthly expenses")
    if growth < -10:
        report.risks.append("Revenue is declining")
    return report


@dataclass
class SpendingInsights:
    category_totals: Dict[str, float]
    anomalies: List[Dict[str, Any]]
    duplicates: List[Dict[str, Any]]
    velocity_change: float
    opportunities: List[str]


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        return date.fromisoformat(value[:10])
    return None


def spending_insights(expenses: List[Dict[str, Any]], months: int, today: date) -> SpendingInsights:
    """
    `expenses` rows carry date, amount (positive), category, merchant and
    is_recurring.

    Anomalies are charges above 2.5x their category average (and over 100)
    in categories with more than two charges. Duplicates are same-day
    charges to the same merchant within one currency unit.
    """
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    for row in expenses:
        totals[row["category"]] += to_float(row["amount"])
        counts[row["category"]] += 1

    anomalies = []
    for row in expenses:
        count = counts[row["category"]]
        if count <= 2:
            continue
        average = totals[row["category"]] / count
        amount = to_float(row["amount"])
        if amount > average * 2.5 and amount > 100:
            anomalies.append({**row, "expected": average, "variance": (amount - average) / average * 100})

    by_day: Dict[Optional[date], List[Dict[str, Any]]] = defaultdict(list)
    for row in expenses:
        by_day[_as_date(row["date"])].append(row)
    duplicates = []
    for rows in by_day.values():
        for i, first in enumerate(rows):
            for second in rows[i + 1:]:
                if abs(to_float(first["amount"]) - to_float(second["amount"])) < 1 and first["merchant"] == second["merchant"]:
                    duplicates.append({"first": first, "second": second})

    dated = [(_as_date(row["date"]), to_float(row["amount"])) for row in expenses]
    weekly = []
    for week in range(months * 4):
        week_end = today - timedelta(days=week * 7)
        week_start = week_end - timedelta(days=7)
        weekly.append(sum(amount for day, amount in dated if day is not None and week_start <= day < week_end))
    recent = mean(weekly[:4])
    older = mean(weekly[-4:])
    velocity = (recent - older) / older * 100 if older > 0 else 0.0

    opportunities = []
    recurring_by_category: Dict[str, int] = defaultdict(int)
    for row in expenses:
        if row.get("is_recurring"):
            recurring_by_category[row["category"]] += 1
    for category, count in recurring_by_category.items():
        if count > 2:
            opportunities.append(f"Multiple {category} subscriptions ({count}) - consider consolidating")
    grand_total = sum(totals.values())
    for category, total in totals.items():
        if grand_total and total / grand_total > 0.3 and total > 500:
            opportunities.append(f"{category} is {total / grand_total * 100:.0f}% of spending - review for optimization")

    return SpendingInsights(
        category_totals=dict(sorted(totals.items(), key=lambda item: item[1], reverse=True)),
        anomalies=anomalies,
        duplicates=duplicates,
        velocity_change=velocity,
        opportunities=opportunities,
    )


@dataclass
class Affordability:
    rating: str
    recommendation: str
    share_of_balance: float
    share_of_income: float
    months_to_save: Optional[float]


def affordability(purchase_amount: float, balance: float, monthly_income: float, monthly_surplus: float) -> Affordability:
    """Rate a purchase against the cash balance and the average monthly surplus."""
    if purchase_amount <= balance * 0.1 and purchase_amount <= monthly_surplus:
        rating, recommendation = "High", "This purchase is well within budget. Safe to proceed."
    elif purchase_amount <= balance * 0.25 and purchase_amount <= monthly_surplus * 3:
        rating, recommendation = "Medium", "Affordable but significant. Consider timing and cash flow impact."
    elif purchase_amount <= balance * 0.5:
        rating, recommendation = (
            "Low",
            "This will significantly impact cash reserves. Consider alternatives or payment plans.",
        )
    else:
        rating, recommendation = (
            "Not Recommended",
            "This purchase exceeds safe spending limits. Consider postponing or finding alternatives.",
        )
    return Affordability(
        rating=rating,
        recommendation=recommendation,
        share_of_balance=purchase_amount / balance * 100 if balance > 0 else 100.0,
        share_of_income=purchase_amount / monthly_income * 100 if monthly_income > 0 else 100.0,
        months_to_save=purchase_amount / monthly_surplus if monthly_surplus > 0 else None,
    )
