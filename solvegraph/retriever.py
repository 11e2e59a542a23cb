"""Ownership-scoped similarity retrieval over the knowledge graph.

Each node type is searched through its own vector index and then filtered to
nodes reachable from the requesting user along
SUBMITTED -> SOLVED_WITH -> BELONGS_TO. The filter is applied inside the query;
nothing from another user's subgraph ever reaches the prompt.
"""

import logging
from typing import Optional

from .database import VECTOR_INDEXES

logger = logging.getLogger(__name__)

EMPTY_CONTEXT = "No specific information found for this user in the knowledge graph."

# Rendering order of the context blocks
NODE_TYPES = ("Problem", "Approach", "Concept")

# Path from the user to a node of each type; `n` is the candidate node
OWNERSHIP_PATTERNS = {
    "Problem": "(:User {userId: $userId})-[:SUBMITTED]->(n)",
    "Approach": "(:User {userId: $userId})-[:SUBMITTED]->(:Problem)-[:SOLVED_WITH]->(n)",
    "Concept": "(:User {userId: $userId})-[:SUBMITTED]->(:Problem)-[:SOLVED_WITH]->(:Approach)-[:BELONGS_TO]->(n)",
}


def _similarity_query(node_type: str) -> str:
    return f"""
        CALL db.index.vector.queryNodes($indexName, $candidates, $embedding)
        YIELD node AS n, score
        WHERE EXISTS {{ MATCH {OWNERSHIP_PATTERNS[node_type]} }}
        RETURN $nodeType AS type, n.name AS name, score
        ORDER BY score DESC
        LIMIT $limit
    """


class RetrievalEngine:

    def __init__(self, db, embedder, candidates: int = 10, per_type_limit: int = 5,
                 indexes: Optional[dict] = None, empty_context: str = EMPTY_CONTEXT):
        self.db = db
        self.embedder = embedder
        self.candidates = candidates
        self.per_type_limit = per_type_limit
        self.indexes = indexes or VECTOR_INDEXES
        self.empty_context = empty_context

    def search(self, user_id: str, embedding: list[float]) -> list[dict]:
        """Run the three scoped similarity searches. Returns rows of {type, name, score}."""
        if not user_id:
            raise ValueError("retrieval requires a user id")
        hits = []
        for node_type in NODE_TYPES:
            rows = self.db.run_read(_similarity_query(node_type), {
                "indexName": self.indexes[node_type],
                "candidates": self.candidates,
                "embedding": embedding,
                "userId": user_id,
                "nodeType": node_type,
                "limit": self.per_type_limit,
            })
            hits.extend(rows)
        return hits

    def group(self, hits: list[dict]) -> dict[str, list[str]]:
        """Dedupe names within each type (best score wins), order by score, cap per type."""
        best: dict[str, dict[str, float]] = {}
        for hit in hits:
            name = (hit.get("name") or "").strip()
            if not name:
                continue
            scores = best.setdefault(hit["type"], {})
            score = float(hit.get("score") or 0.0)
            if score > scores.get(name, float("-inf")):
                scores[name] = score

        grouped = {}
        for node_type in NODE_TYPES:
            scores = best.get(node_type)
            if scores:
                ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
                grouped[node_type] = [name for name, _ in ranked[: self.per_type_limit]]
        return grouped

    def render(self, grouped: dict[str, list[str]]) -> str:
        if not grouped:
            return self.empty_context
        return "\n\n".join(
            f"Relevant {node_type}s:\n- " + "\n- ".join(names)
            for node_type, names in grouped.items()
        )

    def retrieve_context(self, user_id: str, query_text: str) -> str:
        """Embed the query, search the user's subgraph and render the context block."""
        embedding = self.embedder.embed_query(query_text)
        hits = self.search(user_id, embedding)
        context = self.render(self.group(hits))
        logger.debug(f"Retrieved {len(hits)} graph hit(s) for user {user_id}")
        return context
