"""Tests for execution context construction."""

import uuid
from dataclasses import FrozenInstanceError

import pytest
from unittest.mock import patch

from crm_assistant.infra.config import config
from crm_assistant.models.context import UserSession
from crm_assistant.services.context_builder import build_context, resolve_timezone


class TestBuildContext:
    """Test tenant resolution, defaults and immutability."""

    def test_full_session(self, session):
        """Test that session values flow into the context."""
        ctx = build_context(session, "chat-1")

        assert ctx.tenant_id == "tenant-1"
        assert ctx.user_id == "user-1:tenant-1"
        assert ctx.conversation_id == "chat-1"
        assert ctx.company_name == "Acme d.o.o."
        assert ctx.full_name == "Ana Petrović"
        assert ctx.base_currency == "EUR"
        assert ctx.locale == "en-US"
        assert ctx.timezone == "Europe/Belgrade"
        assert ctx.current_datetime.tzinfo is not None
        assert ctx.language == "en"

    def test_tenant_precedence(self):
        """Test active tenant, then company, then the user itself."""
        assert build_context(UserSession(user_id="u", company_id="c", active_tenant_id="t")).tenant_id == "t"
        assert build_context(UserSession(user_id="u", company_id="c")).tenant_id == "c"
        only_user = build_context(UserSession(user_id="u"))
        assert only_user.tenant_id == "u"
        assert only_user.user_id == "u:u"

    def test_defaults(self):
        """Test configured defaults for a bare session."""
        ctx = build_context(UserSession(user_id="u"))

        assert ctx.base_currency == config.DEFAULT_CURRENCY
        assert ctx.locale == config.DEFAULT_LOCALE
        assert ctx.company_name is None
        uuid.UUID(ctx.conversation_id)

    def test_request_timezone_wins(self, session):
        """Test that a valid request timezone overrides the session timezone."""
        ctx = build_context(session, timezone="America/New_York")
        assert ctx.timezone == "America/New_York"

    def test_invalid_timezone_falls_back(self, session):
        """Test that invalid zones never raise."""
        ctx = build_context(session, timezone="Mars/Olympus_Mons")
        assert ctx.timezone == "Europe/Belgrade"

        bare = build_context(UserSession(user_id="u", timezone="not/a zone"))
        assert bare.timezone == config.DEFAULT_TIMEZONE

    def test_context_is_frozen(self, session):
        """Test that the context cannot be modified after construction."""
        ctx = build_context(session)
        with pytest.raises(FrozenInstanceError):
            ctx.tenant_id = "other"


class TestResolveTimezone:
    """Test timezone resolution order."""

    def test_invalid_default_falls_back_to_utc(self):
        """Test that even a broken default resolves."""
        with patch.object(config, "DEFAULT_TIMEZONE", "Nowhere/Nothing"):
            assert resolve_timezone(None, "") == "UTC"

    def test_first_valid_candidate(self):
        assert resolve_timezone("bad", "Asia/Tokyo", "Europe/Paris") == "Asia/Tokyo"
