"""Gemini client wrapper used by the analyze and chat paths.

All calls go through a fixed-backoff RetryPolicy. SDK failures are mapped onto
the error taxonomy first: server-side failures (500, 503, 504, unavailable,
overloaded) are retried; bad requests, auth and quota failures fail immediately.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TypeVar

from google.genai import errors as genai_errors
from google.genai import types

from .errors import UpstreamError, UpstreamPermanentError, UpstreamTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {500, 503, 504}
TRANSIENT_MARKERS = ("UNAVAILABLE", "overloaded", "DEADLINE_EXCEEDED")


def classify_upstream_error(exc: BaseException) -> UpstreamError:
    """Map an SDK/network exception onto UpstreamTransientError or UpstreamPermanentError."""
    if isinstance(exc, UpstreamError):
        return exc

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return UpstreamTransientError(f"Model connection failed: {exc}")

    code = getattr(exc, "code", None)
    status = str(getattr(exc, "status", "") or "")
    text = f"{status} {exc}"

    if code in TRANSIENT_STATUS_CODES or any(m.lower() in text.lower() for m in TRANSIENT_MARKERS):
        return UpstreamTransientError(f"Model temporarily unavailable ({code or status}): {exc}")

    if isinstance(exc, genai_errors.APIError):
        return UpstreamPermanentError(f"Model rejected request ({code} {status}): {exc}")

    return UpstreamPermanentError(f"Model call failed: {exc}")


class RetryPolicy:
    """Bounded retry with fixed delays; one retry per configured delay."""

    def __init__(self, delays: Sequence[float] = (0.25, 0.5, 1.0),
                 sleep: Callable[[float], None] = time.sleep):
        self.delays = tuple(delays)
        self.sleep = sleep

    @property
    def max_retries(self) -> int:
        return len(self.delays)

    def run(self, func: Callable[[], T], description: str = "upstream call") -> T:
        attempt = 0
        while True:
            try:
                return func()
            except UpstreamTransientError as e:
                if attempt >= self.max_retries:
                    logger.error(f"{description} failed after {attempt} retries: {e}")
                    raise
                delay = self.delays[attempt]
                attempt += 1
                logger.warning(f"{description} transient failure, retry {attempt}/{self.max_retries} in {delay}s: {e}")
                self.sleep(delay)


# JSON schema Gemini is asked to fill for an analysis
ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "name": types.Schema(type=types.Type.STRING),
        "approachName": types.Schema(type=types.Type.STRING),
        "pseudoCode": types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)),
        "time": types.Schema(type=types.Type.STRING),
        "space": types.Schema(type=types.Type.STRING),
        "tags": types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)),
        "difficulty": types.Schema(type=types.Type.STRING, enum=["Easy", "Medium", "Hard"]),
    },
    required=["name", "approachName", "pseudoCode", "time", "space", "tags", "difficulty"],
)


@dataclass
class HistoryTurn:
    role: str  # "user" or "model"
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryTurn":
        role = data.get("role")
        if role == "assistant":
            role = "model"
        if role not in ("user", "model") or not isinstance(data.get("text"), str):
            raise ValueError(f"Not a history turn: {data!r}")
        return cls(role=role, text=data["text"])


class GenerativeClient:
    """Thin wrapper over ``genai.Client`` with classification and retry."""

    def __init__(self, client, analysis_model: str, chat_model: str,
                 retry_policy: Optional[RetryPolicy] = None,
                 title_max_words: int = 5, default_title: str = "New Chat"):
        self.client = client
        self.analysis_model = analysis_model
        self.chat_model = chat_model
        self.retry_policy = retry_policy or RetryPolicy()
        self.title_max_words = title_max_words
        self.default_title = default_title

    def _generate(self, model: str, contents, config: Optional[types.GenerateContentConfig] = None) -> str:
        def _once() -> str:
            try:
                response = self.client.models.generate_content(model=model, contents=contents, config=config)
            except Exception as e:
                raise classify_upstream_error(e) from e
            return (response.text or "").strip()

        return self.retry_policy.run(_once, description=f"Gemini {model}")

    def generate_json(self, prompt: str, schema: types.Schema = ANALYSIS_SCHEMA) -> dict:
        """Structured generation. Unparseable output is a permanent failure."""
        text = self._generate(
            self.analysis_model,
            prompt,
            types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise UpstreamPermanentError(f"Model returned invalid JSON: {e}",
                                         public_message="Analysis failed: the model returned malformed output.") from e
        if not isinstance(data, dict):
            raise UpstreamPermanentError("Model returned a non-object JSON value",
                                         public_message="Analysis failed: the model returned malformed output.")
        return data

    def chat(self, history: Sequence[HistoryTurn], message: str, system_prompt: Optional[str] = None) -> str:
        """One generative call over prior turns plus the (augmented) current message."""
        contents = [
            types.Content(role=turn.role, parts=[types.Part.from_text(text=turn.text)])
            for turn in history
        ]
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))
        config = types.GenerateContentConfig(system_instruction=system_prompt) if system_prompt else None
        return self._generate(self.chat_model, contents, config)

    def generate_title(self, message: str) -> str:
        """Short session title; falls back to the default title on any upstream failure."""
        prompt = (
            f"Generate a concise, {self.title_max_words}-word title for the following user query. "
            f'Respond with only the title and nothing else: "{message}"'
        )
        try:
            raw = self._generate(self.chat_model, prompt)
        except UpstreamError as e:
            logger.error(f"Title generation error: {e}")
            return self.default_title
        title = " ".join(raw.replace('"', "").split()[: self.title_max_words])
        return title or self.default_title
