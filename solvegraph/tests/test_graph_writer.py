"""Graph fan-out consumer: embedding, MERGE write and the consumer pipeline."""

import json
from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import ServiceUnavailable

from solvegraph.errors import (
    AuthenticationError, GraphProjectionError, StoreWriteError, UpstreamPermanentError, UpstreamTransientError,
    ValidationError,
)
from solvegraph.graph_writer import MERGE_SUBMISSION, GraphUpsertEngine, handle_job, parse_job
from solvegraph.models import JobPayload
from solvegraph.signature import SignatureVerifier, sign_body

from conftest import CURRENT_KEY, NEXT_KEY

URL = "https://app.example.com/api/queue/graph-writer"
PAYLOAD = {
    "userId": "u1",
    "problem": {
        "url": "https://leetcode.com/problems/two-sum",
        "name": " Two Sum ",
        "domain": "Array",
        "approachName": "Hash Map ",
    },
}


@pytest.fixture
def engine(mock_db, embedder):
    return GraphUpsertEngine(mock_db, embedder)


@pytest.fixture
def verifier():
    return SignatureVerifier(CURRENT_KEY, NEXT_KEY)


def _signed(payload, now, key=CURRENT_KEY):
    body = json.dumps(payload).encode()
    return body, sign_body(key, body, URL, now)


class TestMergeStatement:
    def test_nodes_and_edges_are_merged_never_created(self):
        statement = MERGE_SUBMISSION.upper()
        assert "CREATE" not in statement
        for pattern in ("MERGE (U:USER {USERID: $USERID})", "MERGE (P:PROBLEM {URL: $URL})",
                        "MERGE (A:APPROACH {NAME: $APPROACHNAME})", "MERGE (C:CONCEPT {NAME: $DOMAIN})",
                        "MERGE (U)-[:SUBMITTED]->(P)", "MERGE (P)-[:SOLVED_WITH]->(A)",
                        "MERGE (A)-[:BELONGS_TO]->(C)"):
            assert pattern in statement

    def test_embeddings_refreshed_on_every_application(self):
        assert "ON CREATE" not in MERGE_SUBMISSION.upper()
        for prop in ("p.embedding = $problemEmbedding", "a.embedding = $approachEmbedding",
                     "c.embedding = $domainEmbedding"):
            assert prop in MERGE_SUBMISSION


class TestApply:
    def test_embeds_three_fields_in_one_call_then_writes_once(self, engine, mock_db, embedder):
        engine.apply(JobPayload.model_validate(PAYLOAD))

        assert embedder.calls == [["Two Sum", "Hash Map", "Array"]]
        mock_db.run_write.assert_called_once()
        statement, params = mock_db.run_write.call_args.args
        assert statement == MERGE_SUBMISSION
        assert params["userId"] == "u1"
        assert params["problemName"] == "Two Sum"
        assert params["approachName"] == "Hash Map"
        assert len(params["problemEmbedding"]) == embedder.dimensions
        assert mock_db.run_write.call_args.kwargs == {"retry": False}

    def test_repeated_delivery_sends_identical_merge(self, engine, mock_db):
        payload = JobPayload.model_validate(PAYLOAD)
        for _ in range(3):
            engine.apply(payload)
        calls = mock_db.run_write.call_args_list
        assert len(calls) == 3
        assert all(c.args == calls[0].args for c in calls)

    @pytest.mark.parametrize("error", [
        UpstreamTransientError("embedding service down"),
        UpstreamPermanentError("quota exceeded"),
    ])
    def test_embedding_failure_writes_nothing(self, mock_db, error):
        embedder = MagicMock()
        embedder.embed.side_effect = error
        with pytest.raises(GraphProjectionError) as exc:
            GraphUpsertEngine(mock_db, embedder).apply(JobPayload.model_validate(PAYLOAD))
        assert exc.value.status_code == 500
        assert exc.value.cause_category == error.category
        mock_db.run_write.assert_not_called()

    def test_driver_failure_is_store_write_error(self, engine, mock_db):
        mock_db.run_write.side_effect = ServiceUnavailable("connection refused")
        with pytest.raises(StoreWriteError):
            engine.apply(JobPayload.model_validate(PAYLOAD))


class TestParseJob:
    def test_valid(self):
        job = parse_job(json.dumps(PAYLOAD).encode())
        assert job.problem.name == "Two Sum"

    @pytest.mark.parametrize("body", [
        b"not json",
        json.dumps({"userId": "u1"}).encode(),
        json.dumps({**PAYLOAD, "extra": 1}).encode(),
        json.dumps({"userId": "u1", "problem": {**PAYLOAD["problem"], "name": "   "}}).encode(),
    ])
    def test_invalid(self, body):
        with pytest.raises(ValidationError):
            parse_job(body)


class TestHandleJob:
    def test_success(self, verifier, engine, mock_db, now):
        body, signature = _signed(PAYLOAD, now)
        assert handle_job(verifier, engine, body, signature, URL) == {"success": True}
        mock_db.run_write.assert_called_once()

    def test_signed_with_next_key(self, verifier, engine, now):
        body, signature = _signed(PAYLOAD, now, key=NEXT_KEY)
        assert handle_job(verifier, engine, body, signature, URL) == {"success": True}

    def test_bad_signature_has_no_side_effects(self, verifier, engine, mock_db, embedder, now):
        body, _ = _signed(PAYLOAD, now)
        with pytest.raises(AuthenticationError):
            handle_job(verifier, engine, body, "tampered", URL)
        assert embedder.calls == []
        mock_db.run_write.assert_not_called()

    def test_schema_mismatch_has_no_side_effects(self, verifier, engine, mock_db, embedder, now):
        body, signature = _signed({"userId": "u1", "problem": {"url": "x"}}, now)
        with pytest.raises(ValidationError):
            handle_job(verifier, engine, body, signature, URL)
        assert embedder.calls == []
        mock_db.run_write.assert_not_called()
