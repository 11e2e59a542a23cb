"""Embedding generation using Gemini's embedding model."""

import logging
from typing import Optional

from google.genai import types

from .errors import UpstreamPermanentError, ValidationError
from .llm import RetryPolicy, classify_upstream_error

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Turns short text fields into fixed-length vectors.

    No side effects besides the network call. Failures propagate so callers can
    abandon a write instead of storing nodes without embeddings.
    """

    def __init__(self, client, model: str = "gemini-embedding-001", dimensions: int = 768,
                 retry_policy: Optional[RetryPolicy] = None):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.retry_policy = retry_policy or RetryPolicy()

    def embed(self, texts: list[str], task_type: str = "RETRIEVAL_DOCUMENT") -> list[list[float]]:
        """Generate embeddings for multiple texts in one batch call.

        Args:
            texts: Non-blank texts to embed

        Returns:
            One vector per input text, in input order
        """
        if not texts:
            return []
        if any(not isinstance(t, str) or not t.strip() for t in texts):
            raise ValidationError("Cannot embed empty text")

        def _once() -> list[list[float]]:
            try:
                result = self.client.models.embed_content(
                    model=self.model,
                    contents=list(texts),
                    config=types.EmbedContentConfig(
                        task_type=task_type,
                        output_dimensionality=self.dimensions,
                    ),
                )
            except Exception as e:
                raise classify_upstream_error(e) from e
            return [list(e.values) for e in (result.embeddings or [])]

        vectors = self.retry_policy.run(_once, description=f"Embedding {self.model}")

        if len(vectors) != len(texts):
            raise UpstreamPermanentError(f"Embedding count mismatch: sent {len(texts)}, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise UpstreamPermanentError(
                    f"Embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}"
                )
        logger.debug(f"Embedded {len(texts)} text(s) with {self.model}")
        return vectors

    def embed_query(self, text: str) -> list[float]:
        """Generate the embedding for a single search query."""
        return self.embed([text], task_type="RETRIEVAL_QUERY")[0]
