"""Pydantic schemas for solvegraph: HTTP bodies, queue payloads and LLM output."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


# ========================================
# Queue payloads (trust boundary)
# ========================================

class JobProblem(BaseModel):
    """Problem descriptor carried by a graph fan-out job."""
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, str_strip_whitespace=True)

    url: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    approach_name: str = Field(..., alias="approachName", min_length=1)


class JobPayload(BaseModel):
    """Minimal, already-normalized projection consumed by the graph writer."""
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    problem: JobProblem

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class UserDetails(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class AnalysisData(BaseModel):
    """Structured analysis returned by the generative model."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    approach_name: str = Field(..., alias="approachName", min_length=1)
    pseudo_code: list[str] = Field(..., alias="pseudoCode")
    time: str
    space: str
    tags: list[str]
    difficulty: Difficulty

    @field_validator("tags")
    @classmethod
    def _domain_and_algorithm(cls, value: list[str]) -> list[str]:
        tags = [t.strip() for t in value if isinstance(t, str) and t.strip()]
        if len(tags) < 2:
            raise ValueError("tags must be [domain, keyAlgorithm]")
        return tags

    @property
    def domain(self) -> str:
        return self.tags[0]

    @property
    def key_algorithm(self) -> str:
        return self.tags[1]


class AnalysisJobPayload(BaseModel):
    """Deferred relational write, delivered through the db-writer queue."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    user_details: UserDetails = Field(default_factory=UserDetails, alias="userDetails")
    link: str = Field(..., min_length=1)
    notes: Optional[str] = None
    analysis_data: AnalysisData = Field(..., alias="analysisData")


# ========================================
# HTTP request / response bodies
# ========================================

class AnalyzeRequest(BaseModel):
    link: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    notes: Optional[str] = None


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    approach_name: str = Field(..., alias="approachName")
    pseudo_code: list[str] = Field(..., alias="pseudoCode")
    time: str
    space: str
    tags: list[str]
    difficulty: Difficulty
    domain: str
    key_algorithm: str = Field(..., alias="keyAlgorithm")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    chat_id: Optional[str] = Field(None, alias="chatId")

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("A non-empty 'message' is required.")
        return value


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reply: str
    chat_id: str = Field(..., alias="chatId")
    title: Optional[str] = None


class ChatSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    updated_at: int = Field(..., alias="updatedAt")


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: str
    text: str
    created_at: int = Field(..., alias="createdAt")


class ChatDetailResponse(BaseModel):
    messages: list[ChatMessageOut]
