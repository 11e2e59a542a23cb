"""Fan-out job construction and queue hand-off.

Domain and approach labels are normalized once, here, before a job is
published. The graph writer trusts the payload and never re-derives naming.
"""

import logging
import re
from typing import Optional

import requests

from .errors import PublishError
from .models import AnalysisJobPayload, JobPayload, JobProblem

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_HYPHENATED = re.compile(r"[A-Za-z0-9]+(?:-[A-Za-z0-9]+)+")


def _is_machine_cased(value: str) -> bool:
    """snake_case, SCREAMING_CASE, kebab-case or camelCase with no spaces."""
    if not value or any(ch.isspace() for ch in value):
        return False
    return "_" in value or bool(re.search(r"[a-z][A-Z]", value)) or bool(_HYPHENATED.fullmatch(value))


def normalize_label(value: str) -> str:
    """Trim and turn machine-cased identifiers into word-separated title text.

    >>> normalize_label("  TWO_POINTERS ")
    'Two Pointers'
    >>> normalize_label("hashMap")
    'Hash Map'
    >>> normalize_label("Hash Map O(n)")
    'Hash Map O(n)'
    """
    text = " ".join((value or "").split())
    if not _is_machine_cased(text):
        return text

    words = []
    for chunk in re.split(r"[_\-]+", text):
        words.extend(w for w in _CAMEL_BOUNDARY.split(chunk) if w)
    return " ".join(w.capitalize() if (w.isupper() or w.islower()) else w for w in words)


def build_graph_job(user_id: str, url: str, name: str, domain: str, approach_name: str) -> JobPayload:
    """Minimal normalized projection for the graph writer."""
    return JobPayload(
        user_id=user_id,
        problem=JobProblem(
            url=url.strip(),
            name=" ".join(name.split()),
            domain=normalize_label(domain),
            approach_name=normalize_label(approach_name),
        ),
    )


class JobPublisher:
    """Submits jobs to the queue service, which delivers them to our consumer endpoints."""

    def __init__(self, qstash_url: str, token: Optional[str], base_url: str,
                 graph_writer_path: str = "/api/queue/graph-writer",
                 db_writer_path: str = "/api/queue/db-writer",
                 retries: int = 3, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.qstash_url = qstash_url.rstrip("/")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.graph_writer_path = graph_writer_path
        self.db_writer_path = db_writer_path
        self.retries = retries
        self.timeout = timeout
        self.http = session or requests.Session()

    def destination(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def publish(self, path: str, payload: dict) -> str:
        """Hand one JSON payload to the queue. Returns the queue's message id.

        Raises:
            PublishError: when the queue is unreachable or refuses the message.
        """
        if not self.token:
            raise PublishError("QSTASH_TOKEN is not configured")

        endpoint = f"{self.qstash_url}/v2/publish/{self.destination(path)}"
        try:
            response = self.http.post(
                endpoint,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Upstash-Retries": str(self.retries),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PublishError(f"Queue unreachable for {path}: {e}") from e

        if response.status_code >= 300:
            raise PublishError(f"Queue rejected job for {path}: HTTP {response.status_code} {response.text[:200]}")

        try:
            message_id = response.json().get("messageId", "")
        except ValueError:
            message_id = ""
        logger.info(f"Published job to {path} (message {message_id or 'n/a'})")
        return message_id

    def publish_graph_job(self, job: JobPayload) -> str:
        return self.publish(self.graph_writer_path, job.to_wire())

    def publish_analysis_job(self, job: AnalysisJobPayload) -> str:
        return self.publish(self.db_writer_path, job.model_dump(by_alias=True, mode="json"))
