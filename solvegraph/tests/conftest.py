"""Shared fixtures for the solvegraph test suite.

No external services: the graph driver and model clients are MagicMocks, the
relational store is in-memory SQLite and Redis is replaced by a small list
store that implements only the commands the cache uses.
"""

import time
from unittest.mock import MagicMock

import pytest

from solvegraph.llm import RetryPolicy
from solvegraph.models import AnalysisData
from solvegraph.relational import RelationalStore

CURRENT_KEY = "sig_current_0123456789abcdef"
NEXT_KEY = "sig_next_fedcba9876543210"
DIMENSIONS = 8


# =============================================================================
# FAKE REDIS
# =============================================================================

class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def rpush(self, key, *values):
        self.ops.append(("rpush", key, values))
        return self

    def ltrim(self, key, start, stop):
        self.ops.append(("ltrim", key, (start, stop)))
        return self

    def expire(self, key, seconds):
        self.ops.append(("expire", key, (seconds,)))
        return self

    def execute(self):
        results = []
        for name, key, args in self.ops:
            results.append(getattr(self.redis, name)(key, *args))
        self.ops = []
        return results


class FakeRedis:
    """List commands with redis index semantics (inclusive stop, negative offsets)."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}

    @staticmethod
    def _bounds(length, start, stop):
        if start < 0:
            start = max(length + start, 0)
        if stop < 0:
            stop = length + stop
        return start, min(stop, length - 1)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        start, stop = self._bounds(len(items), start, stop)
        return list(items[start:stop + 1])

    def ltrim(self, key, start, stop):
        items = self.lists.get(key, [])
        start, stop = self._bounds(len(items), start, stop)
        self.lists[key] = items[start:stop + 1]
        return True

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return key in self.lists

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.lists.pop(key, None) is not None)
            self.ttls.pop(key, None)
        return removed

    def pipeline(self):
        return FakePipeline(self)

    def close(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


# =============================================================================
# STORES AND CLIENTS
# =============================================================================

@pytest.fixture
def store():
    """Relational store on a fresh in-memory SQLite database."""
    relational = RelationalStore("sqlite://")
    relational.create_all()
    yield relational
    relational.close()


@pytest.fixture
def mock_db():
    """Graph connection mock with empty reads and zeroed write counters."""
    db = MagicMock()
    db.run_read.return_value = []
    db.run_write.return_value = {
        "nodes_created": 0,
        "nodes_deleted": 0,
        "relationships_created": 0,
        "relationships_deleted": 0,
        "properties_set": 0,
    }
    return db


class FakeEmbedder:
    """Deterministic vectors; records every call."""

    def __init__(self, dimensions=DIMENSIONS):
        self.dimensions = dimensions
        self.calls = []

    def _vector(self, text):
        seed = sum(ord(ch) for ch in text)
        return [((seed * (i + 1)) % 97) / 97.0 for i in range(self.dimensions)]

    def embed(self, texts, task_type="RETRIEVAL_DOCUMENT"):
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_query(self, text):
        return self.embed([text], task_type="RETRIEVAL_QUERY")[0]


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def no_sleep_policy():
    """Default delays, but sleeping only records the delay."""
    slept = []
    policy = RetryPolicy(sleep=slept.append)
    policy.slept = slept
    return policy


# =============================================================================
# DATA
# =============================================================================

@pytest.fixture
def analysis_data():
    return AnalysisData(
        name="Two Sum",
        approach_name="Hash Map",
        pseudo_code=["twoSum(nums, target)", "for each num: check complement in map", "store num -> index"],
        time="O(n)",
        space="O(n)",
        tags=["Array", "Hash Map"],
        difficulty="Easy",
    )


@pytest.fixture
def now():
    return int(time.time())
