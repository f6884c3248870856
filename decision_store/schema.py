"""Schema models for decision persistence and memory.

This module defines the Pydantic models stored by the decision store:
decisions, their message history and cited sources, and the immutable
record written when a decision is completed.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from models.schema import Confidence, OptionConsidered


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Decision(BaseModel):
    """
    Model representing one user-initiated decision thread.

    A decision is active while the workflow drives it through intake,
    research and recommendation, and becomes read-only history once
    completed.
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique decision identifier (UUID)",
    )
    title: str = Field(..., min_length=1, description="Short decision title")
    user_goal: str = Field("", description="The goal text the decision started from")
    status: Literal["active", "completed"] = "active"
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class Message(BaseModel):
    """A single append-only message in a decision's history."""

    id: Optional[int] = Field(None, description="Insertion order row id")
    decision_id: str
    role: Literal["user", "assistant", "system", "tool"]
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class SourceLink(BaseModel):
    """A cited page: title and URL."""

    title: str
    url: str


class Source(SourceLink):
    """A source persisted against a decision."""

    decision_id: str
    fetched_at: datetime = Field(default_factory=utcnow)


class DecisionRecord(BaseModel):
    """
    Immutable structured summary of a completed decision.

    Written once at completion and indexed for memory search through
    ``search_blob()``.
    """

    decision_id: str
    title: str
    user_goal: str
    constraints: List[str] = Field(default_factory=list)
    options_considered: List[OptionConsidered] = Field(default_factory=list)
    recommended_option: str
    rationale: str
    confidence: Confidence = "medium"
    sources: List[SourceLink] = Field(default_factory=list)
    outcome_note: Optional[str] = None
    completed_at: datetime = Field(default_factory=utcnow)

    def search_blob(self) -> str:
        """Lowercase concatenation of the record's searchable text."""
        parts = [
            self.title,
            self.user_goal,
            " ".join(self.constraints),
            self.recommended_option,
            self.rationale,
            " ".join(option.option for option in self.options_considered),
        ]
        return " ".join(parts).lower()


class MemoryMatch(BaseModel):
    """A completed decision matched by memory search."""

    decision_id: str
    title: str
    completed_at: Optional[str] = None
    score: int = Field(..., ge=1, description="Number of query terms found")
    snippet: str = Field(..., description="First 220 characters of the search blob")
