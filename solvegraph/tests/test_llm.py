"""Upstream error classification, bounded retry and the generative client."""

from unittest.mock import MagicMock

import pytest
from google.genai import errors as genai_errors

from solvegraph.errors import UpstreamPermanentError, UpstreamTransientError
from solvegraph.llm import GenerativeClient, HistoryTurn, RetryPolicy, classify_upstream_error


class FakeAPIError(Exception):
    """Shape of a google-genai APIError: numeric code plus status string."""

    def __init__(self, code, status, message=""):
        super().__init__(f"{code} {status}. {message}")
        self.code = code
        self.status = status


# =============================================================================
# Classification
# =============================================================================

class TestClassify:
    @pytest.mark.parametrize("exc", [
        FakeAPIError(503, "UNAVAILABLE", "The model is overloaded."),
        FakeAPIError(504, "DEADLINE_EXCEEDED"),
        FakeAPIError(500, "INTERNAL"),
        ConnectionError("reset by peer"),
        TimeoutError("read timed out"),
    ])
    def test_transient(self, exc):
        assert isinstance(classify_upstream_error(exc), UpstreamTransientError)

    @pytest.mark.parametrize("exc", [
        FakeAPIError(400, "INVALID_ARGUMENT"),
        FakeAPIError(401, "UNAUTHENTICATED"),
        FakeAPIError(403, "PERMISSION_DENIED"),
        FakeAPIError(429, "RESOURCE_EXHAUSTED", "Quota exceeded"),
        ValueError("bad"),
    ])
    def test_permanent(self, exc):
        assert isinstance(classify_upstream_error(exc), UpstreamPermanentError)

    @pytest.mark.parametrize("code, status", [(500, "INTERNAL"), (503, "UNAVAILABLE"), (504, "DEADLINE_EXCEEDED")])
    def test_sdk_server_errors_are_transient_by_code(self, code, status):
        exc = genai_errors.ServerError(code, {"error": {"code": code, "status": status,
                                                        "message": "Internal error encountered."}})
        assert isinstance(classify_upstream_error(exc), UpstreamTransientError)

    def test_sdk_client_error_is_permanent(self):
        exc = genai_errors.ClientError(400, {"error": {"code": 400, "status": "INVALID_ARGUMENT",
                                                       "message": "Request contains an invalid argument."}})
        assert isinstance(classify_upstream_error(exc), UpstreamPermanentError)

    def test_already_classified_passes_through(self):
        err = UpstreamTransientError("x")
        assert classify_upstream_error(err) is err


# =============================================================================
# Retry policy
# =============================================================================

class TestRetryPolicy:
    def test_success_first_try(self, no_sleep_policy):
        assert no_sleep_policy.run(lambda: 42) == 42
        assert no_sleep_policy.slept == []

    def test_transient_then_success(self, no_sleep_policy):
        calls = MagicMock(side_effect=[UpstreamTransientError("busy"), UpstreamTransientError("busy"), "ok"])
        assert no_sleep_policy.run(calls) == "ok"
        assert calls.call_count == 3
        assert no_sleep_policy.slept == [0.25, 0.5]

    def test_transient_exhausts_three_retries(self, no_sleep_policy):
        calls = MagicMock(side_effect=UpstreamTransientError("busy"))
        with pytest.raises(UpstreamTransientError):
            no_sleep_policy.run(calls)
        assert calls.call_count == 4
        assert no_sleep_policy.slept == [0.25, 0.5, 1.0]

    def test_permanent_is_not_retried(self, no_sleep_policy):
        calls = MagicMock(side_effect=UpstreamPermanentError("bad request"))
        with pytest.raises(UpstreamPermanentError):
            no_sleep_policy.run(calls)
        assert calls.call_count == 1
        assert no_sleep_policy.slept == []

    def test_no_delays_means_no_retries(self):
        policy = RetryPolicy(delays=(), sleep=lambda d: None)
        calls = MagicMock(side_effect=UpstreamTransientError("busy"))
        with pytest.raises(UpstreamTransientError):
            policy.run(calls)
        assert calls.call_count == 1


# =============================================================================
# Generative client
# =============================================================================

def _client(*texts_or_errors):
    genai_client = MagicMock()
    side_effect = []
    for item in texts_or_errors:
        if isinstance(item, Exception):
            side_effect.append(item)
        else:
            side_effect.append(MagicMock(text=item))
    genai_client.models.generate_content.side_effect = side_effect
    return genai_client


def _llm(genai_client, policy):
    return GenerativeClient(genai_client, "analysis-model", "chat-model", retry_policy=policy)


class TestGenerativeClient:
    def test_generate_json_parses_object(self, no_sleep_policy):
        genai_client = _client('{"name": "Two Sum"}')
        assert _llm(genai_client, no_sleep_policy).generate_json("prompt") == {"name": "Two Sum"}
        kwargs = genai_client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "analysis-model"
        assert kwargs["config"].response_mime_type == "application/json"

    def test_generate_json_retries_overloaded(self, no_sleep_policy):
        genai_client = _client(FakeAPIError(503, "UNAVAILABLE"), '{"ok": true}')
        assert _llm(genai_client, no_sleep_policy).generate_json("prompt") == {"ok": True}
        assert genai_client.models.generate_content.call_count == 2
        assert no_sleep_policy.slept == [0.25]

    def test_generate_json_bad_request_fails_immediately(self, no_sleep_policy):
        genai_client = _client(FakeAPIError(400, "INVALID_ARGUMENT"))
        with pytest.raises(UpstreamPermanentError):
            _llm(genai_client, no_sleep_policy).generate_json("prompt")
        assert genai_client.models.generate_content.call_count == 1

    @pytest.mark.parametrize("text", ["not json", "[1, 2]"])
    def test_generate_json_malformed_output(self, no_sleep_policy, text):
        with pytest.raises(UpstreamPermanentError):
            _llm(_client(text), no_sleep_policy).generate_json("prompt")

    def test_chat_sends_history_then_message(self, no_sleep_policy):
        genai_client = _client("Use two pointers.")
        history = [HistoryTurn("user", "hi"), HistoryTurn("model", "hello")]
        reply = _llm(genai_client, no_sleep_policy).chat(history, "How?", system_prompt="be brief")

        assert reply == "Use two pointers."
        kwargs = genai_client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "chat-model"
        assert [c.role for c in kwargs["contents"]] == ["user", "model", "user"]
        assert kwargs["contents"][-1].parts[0].text == "How?"
        assert kwargs["config"].system_instruction == "be brief"

    def test_title_strips_quotes_and_truncates(self, no_sleep_policy):
        llm = _llm(_client('"Reversing A Singly Linked List In Place"'), no_sleep_policy)
        assert llm.generate_title("How do I reverse a linked list?") == "Reversing A Singly Linked List"

    def test_title_falls_back_on_failure(self, no_sleep_policy):
        llm = _llm(_client(FakeAPIError(429, "RESOURCE_EXHAUSTED")), no_sleep_policy)
        assert llm.generate_title("anything") == "New Chat"

    def test_title_falls_back_on_empty_output(self, no_sleep_policy):
        assert _llm(_client(""), no_sleep_policy).generate_title("anything") == "New Chat"


class TestHistoryTurn:
    def test_assistant_maps_to_model(self):
        assert HistoryTurn.from_dict({"role": "assistant", "text": "x"}) == HistoryTurn("model", "x")

    @pytest.mark.parametrize("data", [{"role": "system", "text": "x"}, {"role": "user"}, {"text": "x"}])
    def test_invalid_rejected(self, data):
        with pytest.raises(ValueError):
            HistoryTurn.from_dict(data)
