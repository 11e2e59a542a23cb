"""Durable chat history in the graph store.

(:User)-[:STARTED]->(:ChatSession {id, title, createdAt})-[:HAS_MESSAGE]->(:Message {role, text, timestamp})

Messages are only ever CREATEd. Every read and delete is matched through the
owning User, so a chat id alone never resolves another user's session.
"""

import logging

from .llm import HistoryTurn

logger = logging.getLogger(__name__)


class ChatStore:
    def __init__(self, db):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_session_with_turn(self, user_id: str, chat_id: str, title: str,
                                 user_text: str, reply: str) -> dict:
        """Create the session and its first user/assistant message pair."""
        return self.db.run_write("""
            MERGE (u:User {userId: $userId})
            CREATE (cs:ChatSession {id: $chatId, title: $title, createdAt: timestamp()})
            MERGE (u)-[:STARTED]->(cs)
            CREATE (um:Message {role: 'user', text: $userText, timestamp: timestamp()})
            CREATE (cs)-[:HAS_MESSAGE]->(um)
            CREATE (am:Message {role: 'assistant', text: $reply, timestamp: timestamp() + 1})
            CREATE (cs)-[:HAS_MESSAGE]->(am)
        """, {"userId": user_id, "chatId": chat_id, "title": title, "userText": user_text, "reply": reply})

    def append_turn(self, user_id: str, chat_id: str, user_text: str, reply: str) -> bool:
        """Append a user/assistant pair to an existing session owned by user_id.

        Returns False when no such session exists for this user; nothing is written.
        """
        counters = self.db.run_write("""
            MATCH (:User {userId: $userId})-[:STARTED]->(cs:ChatSession {id: $chatId})
            CREATE (um:Message {role: 'user', text: $userText, timestamp: timestamp()})
            CREATE (cs)-[:HAS_MESSAGE]->(um)
            CREATE (am:Message {role: 'assistant', text: $reply, timestamp: timestamp() + 1})
            CREATE (cs)-[:HAS_MESSAGE]->(am)
        """, {"userId": user_id, "chatId": chat_id, "userText": user_text, "reply": reply})
        if not counters.get("nodes_created"):
            logger.warning(f"Chat {chat_id} not found for user {user_id}; turn not persisted")
            return False
        return True

    def delete_session(self, user_id: str, chat_id: str) -> bool:
        """Remove the session and all of its messages. False when nothing matched."""
        counters = self.db.run_write("""
            MATCH (:User {userId: $userId})-[:STARTED]->(cs:ChatSession {id: $chatId})
            OPTIONAL MATCH (cs)-[:HAS_MESSAGE]->(m:Message)
            DETACH DELETE m, cs
        """, {"userId": user_id, "chatId": chat_id})
        return counters.get("nodes_deleted", 0) > 0

    # =========================================================================
    # READS
    # =========================================================================

    def get_recent_messages(self, user_id: str, chat_id: str, limit: int = 20) -> list[HistoryTurn]:
        """Last `limit` messages, oldest first, as model-ready history turns."""
        rows = self.db.run_read("""
            MATCH (:User {userId: $userId})-[:STARTED]->(:ChatSession {id: $chatId})-[:HAS_MESSAGE]->(m:Message)
            RETURN m.role AS role, m.text AS text, m.timestamp AS timestamp
            ORDER BY m.timestamp DESC
            LIMIT $limit
        """, {"userId": user_id, "chatId": chat_id, "limit": int(limit)})
        return [
            HistoryTurn(role="model" if row["role"] == "assistant" else "user", text=row["text"])
            for row in reversed(rows)
        ]

    def list_sessions(self, user_id: str) -> list[dict]:
        rows = self.db.run_read("""
            MATCH (:User {userId: $userId})-[:STARTED]->(cs:ChatSession)
            RETURN cs.id AS id, cs.title AS title, cs.createdAt AS updatedAt
            ORDER BY cs.createdAt DESC
        """, {"userId": user_id})
        return [{"id": r["id"], "title": r["title"], "updatedAt": int(r["updatedAt"] or 0)} for r in rows]

    def get_messages(self, user_id: str, chat_id: str) -> list[dict]:
        """Full ordered transcript for the detail view. Assistant messages are labelled 'bot'."""
        rows = self.db.run_read("""
            MATCH (:User {userId: $userId})-[:STARTED]->(:ChatSession {id: $chatId})-[:HAS_MESSAGE]->(m:Message)
            RETURN m.role AS role, m.text AS text, m.timestamp AS createdAt
            ORDER BY m.timestamp ASC
        """, {"userId": user_id, "chatId": chat_id})
        return [
            {
                "id": f"{r['role']}-{int(r['createdAt'])}",
                "role": "bot" if r["role"] == "assistant" else "user",
                "text": r["text"],
                "createdAt": int(r["createdAt"]),
            }
            for r in rows
        ]

    def session_exists(self, user_id: str, chat_id: str) -> bool:
        rows = self.db.run_read("""
            MATCH (:User {userId: $userId})-[:STARTED]->(cs:ChatSession {id: $chatId})
            RETURN count(cs) AS n
        """, {"userId": user_id, "chatId": chat_id})
        return bool(rows and rows[0]["n"])
