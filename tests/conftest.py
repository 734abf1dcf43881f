"""Pytest configuration and fixtures."""

import os
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment before the application config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ["AUTH_DISABLED"] = "true"
os.environ["OPENAI_API_KEY"] = ""
os.environ["WORKING_MEMORY_ENABLED"] = "false"

from crm_assistant.models.context import ExecutionContext, UserSession  # noqa: E402
from crm_assistant.services.conversation_store import ConversationStore  # noqa: E402


class FakePipeline:
    """Queues commands and applies them on execute, like a MULTI/EXEC pipeline."""

    def __init__(self, redis):
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._commands = []

    def rpush(self, key, *values):
        self._commands.append(("rpush", key, values))
        return self

    def expire(self, key, seconds):
        self._commands.append(("expire", key, seconds))
        return self

    async def execute(self):
        results = []
        for name, key, arg in self._commands:
            if name == "rpush":
                results.append(await self._redis.rpush(key, *arg))
            else:
                results.append(await self._redis.expire(key, arg))
        self._commands = []
        return results


class FakeRedis:
    """In-memory stand-in for the list and string commands the store uses."""

    def __init__(self):
        self.lists = {}
        self.strings = {}
        self.ttls = {}

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        size = len(items)
        start = start if start >= 0 else max(size + start, 0)
        end = end if end >= 0 else size + end
        return items[start:end + 1]

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value, ex=None):
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def ping(self):
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return ConversationStore(fake_redis, ttl_seconds=3600)


@pytest.fixture
def session():
    return UserSession(
        user_id="user-1",
        company_id="company-1",
        active_tenant_id="tenant-1",
        team_name="Acme d.o.o.",
        full_name="Ana Petrović",
        base_currency="EUR",
        locale="en-US",
        timezone="Europe/Belgrade",
    )


@pytest.fixture
def ctx():
    return ExecutionContext(
        tenant_id="tenant-1",
        user_id="user-1:tenant-1",
        conversation_id="conv-1",
        base_currency="EUR",
        locale="en-US",
        timezone="Europe/Belgrade",
        current_datetime=datetime(2026, 3, 15, 10, 30, tzinfo=ZoneInfo("Europe/Belgrade")),
        company_name="Acme d.o.o.",
        full_name="Ana Petrović",
    )
