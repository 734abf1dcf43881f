"""Redis-backed conversation history and working memory."""

import functools
import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import PersistenceFailure
from crm_assistant.infra.redis_client import get_redis
from crm_assistant.models.conversation import ConversationTurn

logger = logging.getLogger(__name__)


def best_effort(default: Any = None) -> Callable:
    """
    Decorate an async store method so failures are logged, not raised.

    `default` is returned on failure; pass a callable (e.g. `list`) to get
    a fresh value each time.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                failure = e if isinstance(e, PersistenceFailure) else PersistenceFailure(str(e) or type(e).__name__)
                logger.error(
                    f"Conversation store {func.__name__} failed: {failure.message}",
                    extra={"operation": func.__name__, "error_category": failure.category.value},
                )
                return default() if callable(default) else default
        return wrapper
    return decorator


def chat_key(tenant_id: str, conversation_id: str) -> str:
    return f"chat:{tenant_id}:{conversation_id}"


def memory_key(user_id: str) -> str:
    """`user_id` is already tenant scoped ("{user}:{tenant}")."""
    return f"memory:{user_id}"


class ConversationStore:
    """
    Conversation turns as a Redis list per (tenant, conversation).

    Every write resets the key expiry, giving a sliding retention window.
    """

    def __init__(self, redis_client, ttl_seconds: int = config.CHAT_HISTORY_TTL_SECONDS):
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    @best_effort(list)
    async def get_history(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        """Last `limit` turns, oldest first."""
        if limit <= 0:
            return []
        raw_entries = await self._redis.lrange(chat_key(tenant_id, conversation_id), -limit, -1)
        turns = []
        for raw in raw_entries:
            try:
                turns.append(ConversationTurn.model_validate_json(raw))
            except (PydanticValidationError, ValueError):
                logger.warning(
                    "Skipping undecodable conversation entry",
                    extra={"tenant_id": tenant_id, "conversation_id": conversation_id},
                )
        return turns

    @best_effort()
    async def append_turn(self, tenant_id: str, conversation_id: str, turn: ConversationTurn) -> None:
        key = chat_key(tenant_id, conversation_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, turn.model_dump_json())
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()

    @best_effort()
    async def get_working_memory(self, user_id: str) -> Optional[str]:
        return await self._redis.get(memory_key(user_id))

    @best_effort()
    async def save_working_memory(self, user_id: str, text: str) -> None:
        await self._redis.set(memory_key(user_id), text, ex=self.ttl_seconds)


_store: Optional[ConversationStore] = None


def get_conversation_store() -> ConversationStore:
    """Process-wide store over the shared Redis client."""
    global _store
    if _store is None:
        _store = ConversationStore(get_redis(), ttl_seconds=config.CHAT_HISTORY_TTL_SECONDS)
    return _store


def reset_conversation_store() -> None:
    """Drop the cached store (after the Redis client is closed)."""
    global _store
    _store = None
