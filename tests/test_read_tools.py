"""Tests for read-only tool executors."""

import pytest
from unittest.mock import AsyncMock, patch

from crm_assistant.models.tool import EmptyParams
from crm_assistant.tools.financial_analysis import GetBurnRateParams, get_burn_rate
from crm_assistant.tools.operations import get_account_balances
from crm_assistant.tools.timetracking import GetTeamUtilizationParams, get_team_utilization


class TestBurnRate:
    """Test the burn rate report."""

    @pytest.mark.asyncio
    async def test_no_payments(self, ctx):
        """Test that an empty ledger short-circuits before other queries."""
        balance = AsyncMock()
        with patch("crm_assistant.data.finance.monthly_totals", AsyncMock(return_value=[])), \
                patch("crm_assistant.data.finance.current_balance", balance):
            result = await get_burn_rate(ctx, GetBurnRateParams())

        assert result.text == "No payment data found for the last 6 months."
        balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queries_are_tenant_scoped(self, ctx):
        monthly = AsyncMock(return_value=[{"month": "2026-02", "income": 1000, "expenses": 3000}])
        with patch("crm_assistant.data.finance.monthly_totals", monthly), \
                patch("crm_assistant.data.finance.current_balance", AsyncMock(return_value=8000)), \
                patch("crm_assistant.data.finance.expenses_grouped", AsyncMock(return_value=[])):
            result = await get_burn_rate(ctx, GetBurnRateParams(months=3))

        monthly.assert_awaited_once_with("tenant-1", 3)
        assert result.text.startswith("## Burn Rate Analysis")


class TestTeamUtilization:
    """Test utilization against a 40 hour week."""

    @pytest.mark.asyncio
    async def test_weekly_utilization(self, ctx):
        rows = [
            {"name": "Marko", "tasks_assigned": 4, "tasks_completed": 2, "logged_hours": 30},
            {"name": None, "tasks_assigned": 1, "tasks_completed": 0, "logged_hours": 10},
        ]
        with patch("crm_assistant.data.timetracking.team_utilization", AsyncMock(return_value=rows)):
            result = await get_team_utilization(ctx, GetTeamUtilizationParams(period="week"))

        assert "| Marko | 4 | 2 | 30.0h | 75% |" in result.text
        assert "| Unknown | 1 | 0 | 10.0h | 25% |" in result.text
        assert "**Team average:** 50% of 40h/week capacity" in result.text

    @pytest.mark.asyncio
    async def test_no_members(self, ctx):
        with patch("crm_assistant.data.timetracking.team_utilization", AsyncMock(return_value=[])):
            result = await get_team_utilization(ctx, GetTeamUtilizationParams())

        assert result.text == "No team members found for this tenant."


class TestAccountBalances:
    """Test the connected account summary."""

    @pytest.mark.asyncio
    async def test_total_balance(self, ctx):
        accounts = [
            {"name": "Main", "bank_name": "Intesa", "account_type": "checking", "balance": 1000, "currency": "EUR",
             "last_synced_at": None},
            {"name": "Savings", "bank_name": None, "account_type": None, "balance": 500, "currency": "EUR",
             "last_synced_at": None},
        ]
        with patch("crm_assistant.data.operations.connected_accounts", AsyncMock(return_value=accounts)), \
                patch("crm_assistant.data.operations.receivables_summary",
                      AsyncMock(return_value={"outstanding": 250, "open_invoices": 2})):
            result = await get_account_balances(ctx, EmptyParams())

        assert "**Total Balance:** 1,500.00 EUR" in result.text
        assert "250.00 EUR (2 open invoices)" in result.text
        assert "| Savings | - | - | 500.00 EUR | N/A |" in result.text

    @pytest.mark.asyncio
    async def test_no_accounts(self, ctx):
        with patch("crm_assistant.data.operations.connected_accounts", AsyncMock(return_value=[])), \
                patch("crm_assistant.data.operations.receivables_summary", AsyncMock(return_value={})):
            result = await get_account_balances(ctx, EmptyParams())

        assert result.text == "No connected bank accounts found."
