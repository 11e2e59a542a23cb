from unittest.mock import MagicMock

import pytest

from solvegraph.embeddings import EmbeddingClient
from solvegraph.errors import UpstreamPermanentError, UpstreamTransientError, ValidationError


def _result(*vectors):
    return MagicMock(embeddings=[MagicMock(values=list(v)) for v in vectors])


@pytest.fixture
def genai_client():
    return MagicMock()


@pytest.fixture
def client(genai_client, no_sleep_policy):
    return EmbeddingClient(genai_client, model="embed-model", dimensions=3, retry_policy=no_sleep_policy)


class TestEmbed:
    def test_one_batch_call_in_input_order(self, client, genai_client):
        genai_client.models.embed_content.return_value = _result([1, 0, 0], [0, 1, 0], [0, 0, 1])
        vectors = client.embed(["Two Sum", "Hash Map", "Array"])

        assert vectors == [[1, 0, 0], [0, 1, 0], [0, 0, 1]]
        genai_client.models.embed_content.assert_called_once()
        kwargs = genai_client.models.embed_content.call_args.kwargs
        assert kwargs["contents"] == ["Two Sum", "Hash Map", "Array"]
        assert kwargs["config"].output_dimensionality == 3

    def test_empty_input_makes_no_call(self, client, genai_client):
        assert client.embed([]) == []
        genai_client.models.embed_content.assert_not_called()

    @pytest.mark.parametrize("texts", [[""], ["ok", "   "]])
    def test_blank_text_rejected(self, client, genai_client, texts):
        with pytest.raises(ValidationError):
            client.embed(texts)
        genai_client.models.embed_content.assert_not_called()

    def test_count_mismatch_is_permanent(self, client, genai_client):
        genai_client.models.embed_content.return_value = _result([1, 0, 0])
        with pytest.raises(UpstreamPermanentError):
            client.embed(["a", "b"])

    def test_dimension_mismatch_is_permanent(self, client, genai_client):
        genai_client.models.embed_content.return_value = _result([1, 0])
        with pytest.raises(UpstreamPermanentError):
            client.embed(["a"])

    def test_connection_error_retried(self, client, genai_client, no_sleep_policy):
        genai_client.models.embed_content.side_effect = [ConnectionError("reset"), _result([1, 2, 3])]
        assert client.embed_query("query") == [1, 2, 3]
        assert no_sleep_policy.slept == [0.25]
        assert genai_client.models.embed_content.call_args.kwargs["config"].task_type == "RETRIEVAL_QUERY"

    def test_persistent_outage_surfaces_transient_error(self, client, genai_client):
        genai_client.models.embed_content.side_effect = ConnectionError("reset")
        with pytest.raises(UpstreamTransientError):
            client.embed(["a"])
        assert genai_client.models.embed_content.call_count == 4
