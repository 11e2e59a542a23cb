"""Short-term conversation history in Redis, backed by the durable chat store."""

import json
import logging
from typing import Iterable

from redis.exceptions import RedisError

from .llm import HistoryTurn

logger = logging.getLogger(__name__)


def history_key(user_id: str, chat_id: str) -> str:
    """Cache key for one user's chat. Both parts are required."""
    if not user_id or not chat_id:
        raise ValueError("history key needs both a user id and a chat id")
    return f"user:{user_id}:chat:{chat_id}:history"


class ConversationCache:
    """Bounded, expiring list of turns per (user, chat).

    Entries are JSON strings ``{"role": "user"|"model", "text": ...}`` kept in
    insertion order. The list never holds more than ``max_turns`` entries and
    its expiry is refreshed on every write.
    """

    def __init__(self, redis_client, store, max_turns: int = 20, ttl_seconds: int = 3600):
        self.redis = redis_client
        self.store = store
        self.max_turns = max_turns
        self.ttl_seconds = ttl_seconds

    def _push(self, key: str, turns: list[HistoryTurn]) -> None:
        pipe = self.redis.pipeline()
        pipe.rpush(key, *[json.dumps(t.to_dict()) for t in turns])
        pipe.ltrim(key, -self.max_turns, -1)
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    @staticmethod
    def _decode(raw_items) -> list[HistoryTurn]:
        turns = []
        for raw in raw_items:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            try:
                turns.append(HistoryTurn.from_dict(json.loads(raw)))
            except (ValueError, TypeError, AttributeError):
                logger.debug(f"Skipping undecodable history entry: {raw!r}")
        return turns

    def get(self, user_id: str, chat_id: str) -> list[HistoryTurn]:
        """History for a chat, oldest first.

        A miss (or a cache failure) reads the last N messages from the durable
        store and backfills the cache with them.
        """
        key = history_key(user_id, chat_id)
        try:
            cached = self.redis.lrange(key, -self.max_turns, -1)
        except RedisError as e:
            logger.warning(f"History cache read failed for {key}, using durable store: {e}")
            return self.store.get_recent_messages(user_id, chat_id, self.max_turns)

        if cached:
            return self._decode(cached)

        turns = self.store.get_recent_messages(user_id, chat_id, self.max_turns)
        if turns:
            try:
                self._push(key, turns)
            except RedisError as e:
                logger.warning(f"History cache backfill failed for {key}: {e}")
        return turns

    def append(self, user_id: str, chat_id: str, turns: Iterable[HistoryTurn]) -> None:
        turns = list(turns)
        if not turns:
            return
        self._push(history_key(user_id, chat_id), turns)

    def delete(self, user_id: str, chat_id: str) -> None:
        self.redis.delete(history_key(user_id, chat_id))
