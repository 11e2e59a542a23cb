"""Relational store for users, analysis records and their snapshots.

Models:
- User: one row per authenticated user id, created on first analysis
- Problem: the analysis record, unique on (user_id, url, approach_name)
- Analysis: append-only snapshot history of a Problem

The writer never creates a second Problem for the same natural key: a
resubmission overwrites the record's metadata and appends a snapshot.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import (
    JSON, Column, Enum, ForeignKey, Integer, String, Text, TIMESTAMP, UniqueConstraint, create_engine,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StoreWriteError
from .models import AnalysisData, Difficulty, UserDetails

logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# ORM Models
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    username = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    problems = relationship("Problem", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id='{self.id}', username='{self.username}')>"


class Problem(Base):
    """Analysis record keyed by (user_id, url, approach_name)."""
    __tablename__ = "problems"
    __table_args__ = (
        UniqueConstraint("user_id", "url", "approach_name", name="uq_problem_user_url_approach"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    approach_name = Column(String(255), nullable=False)
    name = Column(String(512), nullable=False)
    domain = Column(String(255), nullable=False)
    key_algorithm = Column(String(255), nullable=False)
    difficulty = Column(
        Enum(Difficulty, name="difficulty", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="problems")
    analyses = relationship(
        "Analysis",
        back_populates="problem",
        cascade="all, delete-orphan",
        order_by="Analysis.id",
    )

    def __repr__(self):
        return f"<Problem(id={self.id}, url='{self.url}', approach='{self.approach_name}')>"


class Analysis(Base):
    """One snapshot of an analysis. Never updated after insert."""
    __tablename__ = "analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(Integer, ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True)
    pseudo_code = Column(JSON, nullable=False, default=list)
    time = Column(String(64), nullable=False)
    space = Column(String(64), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    problem = relationship("Problem", back_populates="analyses")


# =============================================================================
# Store
# =============================================================================

@dataclass
class UpsertResult:
    problem_id: int
    created: bool
    snapshot_count: int


class RelationalStore:
    """Session management plus the idempotent analysis writer."""

    def __init__(self, database_url: str, echo: bool = False):
        engine_kwargs = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self):
        """Transactional scope: commit on success, rollback on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # Writer
    # =========================================================================

    @staticmethod
    def _ensure_user(session, user_id: str, user_details: Optional[UserDetails]) -> None:
        """Create the user if absent. Existing profile fields are never overwritten."""
        if session.get(User, user_id) is not None:
            return
        details = user_details or UserDetails()
        session.add(User(
            id=user_id,
            username=details.name or user_id,
            email=details.email or f"{user_id}@placeholder.email",
        ))
        session.flush()

    def _write_once(self, user_id: str, user_details: Optional[UserDetails], url: str,
                    approach_name: str, analysis: AnalysisData, notes: Optional[str]) -> UpsertResult:
        with self.get_session() as session:
            self._ensure_user(session, user_id, user_details)

            problem = session.query(Problem).filter(
                Problem.user_id == user_id,
                Problem.url == url,
                Problem.approach_name == approach_name,
            ).one_or_none()

            snapshot = Analysis(
                pseudo_code=list(analysis.pseudo_code),
                time=analysis.time,
                space=analysis.space,
                tags=list(analysis.tags),
                notes=notes or "",
            )

            created = problem is None
            if created:
                problem = Problem(
                    user_id=user_id,
                    url=url,
                    approach_name=approach_name,
                    name=analysis.name,
                    domain=analysis.domain,
                    key_algorithm=analysis.key_algorithm,
                    difficulty=analysis.difficulty,
                    analyses=[snapshot],
                )
                session.add(problem)
            else:
                problem.name = analysis.name
                problem.domain = analysis.domain
                problem.key_algorithm = analysis.key_algorithm
                problem.difficulty = analysis.difficulty
                problem.analyses.append(snapshot)

            session.flush()
            return UpsertResult(problem_id=problem.id, created=created, snapshot_count=len(problem.analyses))

    def upsert_analysis(self, user_id: str, user_details: Optional[UserDetails], url: str,
                        approach_name: str, analysis: AnalysisData, notes: Optional[str] = None) -> UpsertResult:
        """Create or update the record for (user_id, url, approach_name) and append a snapshot.

        A unique violation means a concurrent delivery inserted the same natural
        key first; the write is retried once and then lands as an update.

        Raises:
            StoreWriteError: on constraint or connection failure.
        """
        for attempt in (1, 2):
            try:
                result = self._write_once(user_id, user_details, url, approach_name, analysis, notes)
                logger.info(
                    f"{'Created' if result.created else 'Updated'} record {result.problem_id} "
                    f"for user {user_id} ({approach_name}), {result.snapshot_count} snapshot(s)"
                )
                return result
            except IntegrityError as e:
                if attempt == 2:
                    raise StoreWriteError(f"Relational write failed after conflict retry: {e}") from e
                logger.warning(f"Concurrent insert for ({user_id}, {url}, {approach_name}); retrying as update")
            except SQLAlchemyError as e:
                raise StoreWriteError(f"Relational write failed: {e}") from e

    # =========================================================================
    # Readers
    # =========================================================================

    def get_record(self, user_id: str, url: str, approach_name: str) -> Optional[dict]:
        """Record with its ordered snapshots, or None."""
        with self.get_session() as session:
            problem = session.query(Problem).filter(
                Problem.user_id == user_id,
                Problem.url == url,
                Problem.approach_name == approach_name,
            ).one_or_none()
            if problem is None:
                return None
            return {
                "id": problem.id,
                "url": problem.url,
                "name": problem.name,
                "approachName": problem.approach_name,
                "domain": problem.domain,
                "keyAlgorithm": problem.key_algorithm,
                "difficulty": problem.difficulty.value,
                "analyses": [
                    {
                        "pseudoCode": a.pseudo_code,
                        "time": a.time,
                        "space": a.space,
                        "tags": a.tags,
                        "notes": a.notes,
                        "createdAt": a.created_at.isoformat(),
                    }
                    for a in problem.analyses
                ],
            }

    def count_records(self, user_id: str) -> int:
        with self.get_session() as session:
            return session.query(Problem).filter(Problem.user_id == user_id).count()

    def iter_records(self, user_id: Optional[str] = None, batch_size: int = 500) -> Iterator[dict]:
        """Natural-key projection of every record, for republishing graph jobs."""
        with self.get_session() as session:
            query = session.query(
                Problem.user_id, Problem.url, Problem.name, Problem.domain, Problem.approach_name,
            ).order_by(Problem.id)
            if user_id:
                query = query.filter(Problem.user_id == user_id)
            for row in query.yield_per(batch_size):
                yield {
                    "user_id": row.user_id,
                    "url": row.url,
                    "name": row.name,
                    "domain": row.domain,
                    "approach_name": row.approach_name,
                }
