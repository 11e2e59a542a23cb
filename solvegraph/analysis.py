"""Solution analysis: model call, relational upsert, graph fan-out.

The relational write commits before the graph job is published. A publish
failure is logged and leaves the record in place; the graph catches up on the
next delivery or reconciliation sweep.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import PublishError, StoreWriteError, UpstreamPermanentError, ValidationError
from .llm import ANALYSIS_SCHEMA
from .models import AnalysisData, AnalysisJobPayload, AnalyzeResponse, UserDetails
from .prompts import build_analysis_prompt
from .publisher import build_graph_job
from .signature import SignatureVerifier

logger = logging.getLogger(__name__)


def validate_analysis(raw: dict) -> AnalysisData:
    """Check the model's JSON against the analysis contract.

    Raises:
        UpstreamPermanentError: the model output cannot be used
    """
    approach = raw.get("approachName")
    if not isinstance(approach, str) or not approach.strip():
        raise UpstreamPermanentError(
            "Model output missing approachName",
            public_message="Analysis failed: The AI did not provide a valid 'approachName'. Please try again.",
        )

    tags = raw.get("tags")
    if not isinstance(tags, list) or len([t for t in tags if isinstance(t, str) and t.strip()]) < 2:
        raise UpstreamPermanentError(
            f"Model returned tags {tags!r}",
            public_message="Gemini did not return tags in [domain, keyAlgorithm] format.",
        )

    try:
        return AnalysisData.model_validate(raw)
    except PydanticValidationError as e:
        raise UpstreamPermanentError(
            f"Model output failed validation: {e.errors(include_url=False)}",
            public_message="Analysis failed: the model returned an incomplete analysis.",
        ) from e


def to_response(analysis: AnalysisData) -> AnalyzeResponse:
    return AnalyzeResponse(
        name=analysis.name,
        approach_name=analysis.approach_name,
        pseudo_code=analysis.pseudo_code,
        time=analysis.time,
        space=analysis.space,
        tags=analysis.tags,
        difficulty=analysis.difficulty,
        domain=analysis.domain,
        key_algorithm=analysis.key_algorithm,
    )


class AnalysisService:
    def __init__(self, llm, store, publisher):
        self.llm = llm
        self.store = store
        self.publisher = publisher

    def _persist_and_fan_out(self, user_id: str, user_details: Optional[UserDetails], link: str,
                             analysis: AnalysisData, notes: Optional[str]) -> None:
        try:
            self.store.upsert_analysis(user_id, user_details, link, analysis.approach_name, analysis, notes)
        except StoreWriteError as e:
            logger.error(f"relational write failed for user {user_id} ({link}): {e}")
            raise

        job = build_graph_job(user_id, link, analysis.name, analysis.domain, analysis.approach_name)
        try:
            self.publisher.publish_graph_job(job)
        except PublishError as e:
            logger.error(f"publish failed for user {user_id} ({link}); record kept, graph pending: {e}")

    def analyze(self, user, link: str, code: str, notes: Optional[str] = None) -> AnalyzeResponse:
        """Analyze a submitted solution for an authenticated user.

        Args:
            user: Identity with id, name and email
            link: Problem URL
            code: Solution source

        Returns:
            The structured analysis plus derived domain and keyAlgorithm
        """
        link = (link or "").strip()
        if not link or not (code or "").strip():
            raise ValidationError("link and code are required", public_message="Both link and code are required.")

        raw = self.llm.generate_json(build_analysis_prompt(link, code), ANALYSIS_SCHEMA)
        analysis = validate_analysis(raw)

        self._persist_and_fan_out(
            user.id, UserDetails(name=user.name, email=user.email), link, analysis, notes,
        )
        logger.info(f"Analyzed '{analysis.name}' ({analysis.approach_name}) for user {user.id}")
        return to_response(analysis)

    def apply_analysis_job(self, job: AnalysisJobPayload) -> None:
        """Deferred relational write delivered through the db-writer queue."""
        self._persist_and_fan_out(job.user_id, job.user_details, job.link.strip(), job.analysis_data, job.notes)


def parse_analysis_job(body: bytes) -> AnalysisJobPayload:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Job body is not JSON: {e}") from e
    try:
        return AnalysisJobPayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid analysis job: {e.errors(include_url=False)}") from e


def handle_analysis_job(verifier: SignatureVerifier, service: AnalysisService, body: bytes,
                        signature: Optional[str], url: Optional[str] = None) -> dict:
    verifier.require(body, signature, url)
    service.apply_analysis_job(parse_analysis_job(body))
    return {"success": True}
