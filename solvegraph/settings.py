"""Environment-backed settings: secrets, endpoints and connection strings.

Values are read from environment variables (a ``.env`` at the repository root
is loaded first). Secrets are never returned in full by ``masked()``.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings(BaseModel):
    gemini_api_key: Optional[str] = None

    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    neo4j_database: str = "neo4j"

    database_url: str = "sqlite:///./solvegraph.db"
    redis_url: str = "redis://localhost:6379/0"

    qstash_url: str = "https://qstash.upstash.io"
    qstash_token: Optional[str] = None
    qstash_current_signing_key: Optional[str] = None
    qstash_next_signing_key: Optional[str] = None
    public_base_url: str = "http://localhost:8000"

    jwt_secret_key: str = "solvegraph-dev-secret"
    auth_disabled: bool = False
    log_level: str = "INFO"

    def masked(self) -> dict:
        """Settings summary with secrets reduced to their first/last characters."""
        def _mask(value: Optional[str]) -> Optional[str]:
            if not value:
                return None
            if len(value) > 8:
                return f"{value[:4]}...{value[-4:]}"
            return "***"

        return {
            "neo4j_uri": self.neo4j_uri,
            "database_url": self.database_url.split("@")[-1],
            "redis_url": self.redis_url.split("@")[-1],
            "qstash_url": self.qstash_url,
            "public_base_url": self.public_base_url,
            "gemini_api_key": _mask(self.gemini_api_key),
            "qstash_token": _mask(self.qstash_token),
            "auth_disabled": self.auth_disabled,
        }


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY"),
        neo4j_uri=os.getenv("NEO4J_URI", "bolt://localhost:7687"),
        neo4j_user=os.getenv("NEO4J_USER", "neo4j"),
        neo4j_password=os.getenv("NEO4J_PASSWORD", ""),
        neo4j_database=os.getenv("NEO4J_DATABASE", "neo4j"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./solvegraph.db"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        qstash_url=os.getenv("QSTASH_URL", "https://qstash.upstash.io"),
        qstash_token=os.getenv("QSTASH_TOKEN"),
        qstash_current_signing_key=os.getenv("QSTASH_CURRENT_SIGNING_KEY"),
        qstash_next_signing_key=os.getenv("QSTASH_NEXT_SIGNING_KEY"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "solvegraph-dev-secret"),
        auth_disabled=_flag("AUTH_DISABLED"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
