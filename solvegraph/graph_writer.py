"""Graph fan-out consumer: applies a JobPayload to the knowledge graph.

One job becomes one embedding batch and one write transaction. Every node is
merged on its natural key, so redelivery of the same job never duplicates.
"""

import json
import logging
from typing import Optional

from neo4j.exceptions import DriverError, Neo4jError
from pydantic import ValidationError as PydanticValidationError

from .errors import GraphProjectionError, StoreWriteError, UpstreamError, ValidationError
from .models import JobPayload
from .signature import SignatureVerifier

logger = logging.getLogger(__name__)


MERGE_SUBMISSION = """
MERGE (u:User {userId: $userId})
MERGE (p:Problem {url: $url})
  SET p.name = $problemName, p.embedding = $problemEmbedding
MERGE (a:Approach {name: $approachName})
  SET a.embedding = $approachEmbedding
MERGE (c:Concept {name: $domain})
  SET c.embedding = $domainEmbedding
MERGE (u)-[:SUBMITTED]->(p)
MERGE (p)-[:SOLVED_WITH]->(a)
MERGE (a)-[:BELONGS_TO]->(c)
"""


class GraphUpsertEngine:
    """Embeds the three text fields of a job and merges its subgraph."""

    def __init__(self, db, embedder):
        self.db = db
        self.embedder = embedder

    def apply(self, payload: JobPayload) -> dict:
        """Merge User, Problem, Approach and Concept plus their three edges.

        Embeddings are computed before the transaction opens; if that fails
        nothing is written.

        Returns:
            Update counters from the write transaction

        Raises:
            GraphProjectionError: embedding generation failed
            StoreWriteError: the graph write failed
        """
        problem = payload.problem
        user_id = payload.user_id.strip()
        url = problem.url.strip()
        name = problem.name.strip()
        approach_name = problem.approach_name.strip()
        domain = problem.domain.strip()

        try:
            problem_vec, approach_vec, domain_vec = self.embedder.embed([name, approach_name, domain])
        except UpstreamError as e:
            raise GraphProjectionError(
                f"Embedding failed for {url} [{e.category}]: {e}", cause_category=e.category,
            ) from e

        params = {
            "userId": user_id,
            "url": url,
            "problemName": name,
            "approachName": approach_name,
            "domain": domain,
            "problemEmbedding": problem_vec,
            "approachEmbedding": approach_vec,
            "domainEmbedding": domain_vec,
        }
        try:
            counters = self.db.run_write(MERGE_SUBMISSION, params, retry=False)
        except (Neo4jError, DriverError) as e:
            raise StoreWriteError(f"Graph write failed for {url}: {e}") from e

        logger.info(f"Knowledge graph updated for problem '{name}' ({approach_name} / {domain})")
        return counters


def parse_job(body: bytes) -> JobPayload:
    """Decode and validate a raw delivery body. Raises ValidationError."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Job body is not JSON: {e}") from e
    try:
        return JobPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid graph job: {e.errors(include_url=False)}") from e


def handle_job(verifier: SignatureVerifier, engine: GraphUpsertEngine, body: bytes,
               signature: Optional[str], url: Optional[str] = None) -> dict:
    """Consumer pipeline: verify, parse, apply.

    Signature failure raises AuthenticationError before the body is even
    parsed; schema failure raises ValidationError before any store access.
    """
    verifier.require(body, signature, url)
    payload = parse_job(body)
    engine.apply(payload)
    return {"success": True}
