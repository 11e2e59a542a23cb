"""Configuration loader for solvegraph.

Tunables (model ids, retry delays, cache and retrieval limits) are kept in a
YAML file and validated with pydantic. Secrets and connection strings are read
from the environment by ``solvegraph.settings``.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


# =============================================================================
# PYDANTIC MODELS FOR CONFIGURATION VALIDATION
# =============================================================================

class ModelsConfig(BaseModel):
    """Generative and embedding model identifiers."""
    analysis: str = "gemini-2.5-pro"
    chat: str = "gemini-2.5-flash"
    embedding: str = "gemini-embedding-001"
    embedding_dimensions: int = Field(768, gt=0)


class RetryConfig(BaseModel):
    """Fixed backoff schedule for transient upstream failures."""
    delays: list[float] = Field(default_factory=lambda: [0.25, 0.5, 1.0])

    @field_validator("delays")
    @classmethod
    def _bounded(cls, value: list[float]) -> list[float]:
        if len(value) > 3:
            raise ValueError("at most 3 retries are allowed")
        if any(d < 0 for d in value):
            raise ValueError("retry delays must be non-negative")
        return value


class ChatConfig(BaseModel):
    history_length: int = Field(20, gt=0)
    cache_ttl_seconds: int = Field(3600, gt=0)
    title_max_words: int = Field(5, gt=0)
    default_title: str = "New Chat"


class RetrievalConfig(BaseModel):
    """Vector search limits and index names per node label."""
    candidates_per_index: int = Field(10, gt=0)
    per_type_limit: int = Field(5, gt=0)
    indexes: dict[str, str] = Field(default_factory=lambda: {
        "Problem": "problemEmbeddings",
        "Approach": "approachEmbeddings",
        "Concept": "conceptEmbeddings",
    })
    empty_context: str = "No specific information found for this user in the knowledge graph."


class QueueConfig(BaseModel):
    graph_writer_path: str = "/api/queue/graph-writer"
    db_writer_path: str = "/api/queue/db-writer"
    retries: int = Field(3, ge=0)
    clock_tolerance_seconds: int = Field(0, ge=0)


class AppConfig(BaseModel):
    """Root configuration object."""
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)


# =============================================================================
# LOADING
# =============================================================================

_PACKAGE_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = _PACKAGE_DIR / "config.yaml"

_config: Optional[AppConfig] = None


def _resolve_config_path(config_path: Optional[str] = None) -> Path:
    """Explicit path first, then SOLVEGRAPH_CONFIG, then the bundled file."""
    if config_path:
        return Path(config_path)
    env_path = os.getenv("SOLVEGRAPH_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Missing sections fall back to the model defaults, so a partial file is valid.
    """
    path = _resolve_config_path(config_path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return AppConfig(**raw)


def get_config() -> AppConfig:
    """Get the loaded configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """Force reload of configuration."""
    global _config
    _config = load_config(config_path)
    return _config
