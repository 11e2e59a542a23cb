"""Chat orchestration: history + graph context -> one model call -> persistence.

A request without a chat id starts a new session: no history is read and a
title is generated after the reply. A request with a chat id reads history and
retrieves context concurrently.

Persistence runs after the reply has been returned to the caller. If the
process dies in between, the turn is missing from durable history even though
the user saw the reply.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from neo4j.exceptions import DriverError, Neo4jError
from redis.exceptions import RedisError

from .errors import ValidationError
from .llm import HistoryTurn
from .prompts import CHAT_SYSTEM_PROMPT, build_chat_prompt

logger = logging.getLogger("chat")


@dataclass
class ChatTurn:
    reply: str
    chat_id: str
    title: Optional[str]
    is_new: bool
    user_text: str

    def history_turns(self) -> list[HistoryTurn]:
        return [HistoryTurn(role="user", text=self.user_text), HistoryTurn(role="model", text=self.reply)]


class ChatOrchestrator:
    def __init__(self, cache, retriever, llm, chat_store):
        self.cache = cache
        self.retriever = retriever
        self.llm = llm
        self.chat_store = chat_store

    def _load_history(self, user_id: str, chat_id: str) -> list[HistoryTurn]:
        try:
            return self.cache.get(user_id, chat_id)
        except (Neo4jError, DriverError) as e:
            logger.warning(f"Chat history unavailable for {chat_id}, continuing without it: {e}")
            return []

    async def respond(self, user_id: str, message: str, chat_id: Optional[str] = None) -> ChatTurn:
        """Produce the assistant reply for one user message.

        Raises:
            ValidationError: blank message
            UpstreamError: embedding or generative call failed
        """
        if not message or not message.strip():
            raise ValidationError("Empty chat message", public_message="A non-empty 'message' is required.")

        is_new = not chat_id
        if is_new:
            chat_id = str(uuid.uuid4())
            history = []
            context = await asyncio.to_thread(self.retriever.retrieve_context, user_id, message)
        else:
            history, context = await asyncio.gather(
                asyncio.to_thread(self._load_history, user_id, chat_id),
                asyncio.to_thread(self.retriever.retrieve_context, user_id, message),
            )

        prompt = build_chat_prompt(context, message)
        reply = await asyncio.to_thread(self.llm.chat, history, prompt, CHAT_SYSTEM_PROMPT)

        title = None
        if is_new:
            title = await asyncio.to_thread(self.llm.generate_title, message)

        logger.info(f"Chat reply for user {user_id} in {'new' if is_new else 'existing'} session {chat_id}")
        return ChatTurn(reply=reply, chat_id=chat_id, title=title, is_new=is_new, user_text=message)

    def persist(self, user_id: str, turn: ChatTurn) -> None:
        """Append the turn to the cache, then write it as durable messages.

        A cache failure is logged and does not block the durable write.
        """
        try:
            self.cache.append(user_id, turn.chat_id, turn.history_turns())
        except RedisError as e:
            logger.error(f"History cache append failed for {turn.chat_id}: {e}")

        if turn.is_new:
            self.chat_store.create_session_with_turn(
                user_id, turn.chat_id, turn.title or self.llm.default_title, turn.user_text, turn.reply,
            )
        else:
            self.chat_store.append_turn(user_id, turn.chat_id, turn.user_text, turn.reply)

    def persist_in_background(self, user_id: str, turn: ChatTurn) -> None:
        """Scheduled after the response is sent; errors are logged, never raised."""
        try:
            self.persist(user_id, turn)
        except Exception as e:
            logger.error(f"background persistence failed for chat {turn.chat_id}: {e}", exc_info=True)
