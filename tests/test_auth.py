"""Tests for API key authentication."""

import pytest
from unittest.mock import MagicMock, patch

from crm_assistant.infra import auth
from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import AuthenticationError
from crm_assistant.models.context import UserSession

VALID_KEY = "crm_live_0123456789abcdef"


class TestKeyHashing:
    """Test bcrypt hashing of API keys."""

    def test_hash_verifies(self):
        key_hash = auth.hash_api_key(VALID_KEY)

        assert key_hash != VALID_KEY
        assert auth.verify_key_hash(VALID_KEY, key_hash) is True
        assert auth.verify_key_hash(VALID_KEY + "x", key_hash) is False

    def test_malformed_hash_never_matches(self):
        assert auth.verify_key_hash(VALID_KEY, "not-a-bcrypt-hash") is False

    def test_prefix(self):
        assert auth.get_key_prefix(VALID_KEY) == "crm_live"
        assert auth.get_key_prefix("abc") == "abc"


class TestAuthenticate:
    """Test key resolution and the development bypass."""

    @pytest.mark.asyncio
    async def test_dev_bypass(self):
        with patch.object(config, "AUTH_DISABLED", True), patch.object(config, "APP_ENV", "development"):
            session = await auth.authenticate(None)

        assert session.user_id == config.DEV_USER_ID
        assert session.active_tenant_id == config.DEV_TENANT_ID

    @pytest.mark.asyncio
    async def test_bypass_ignored_in_production(self):
        """Test that AUTH_DISABLED has no effect in production."""
        with patch.object(config, "AUTH_DISABLED", True), patch.object(config, "APP_ENV", "production"):
            with pytest.raises(AuthenticationError):
                await auth.authenticate(None)

    @pytest.mark.asyncio
    async def test_short_key_skips_lookup(self):
        lookup = MagicMock()
        with patch.object(auth, "_lookup_session", lookup):
            with pytest.raises(AuthenticationError, match="format"):
                await auth.authenticate("short")
        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_key(self):
        with patch.object(auth, "_lookup_session", MagicMock(return_value=None)):
            with pytest.raises(AuthenticationError, match="Invalid API key"):
                await auth.authenticate(VALID_KEY)

    @pytest.mark.asyncio
    async def test_known_key(self):
        expected = UserSession(user_id="user-7", active_tenant_id="tenant-7")
        with patch.object(auth, "_lookup_session", MagicMock(return_value=expected)):
            session = await auth.authenticate(VALID_KEY)

        assert session is expected
