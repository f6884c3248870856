"""Pydantic models for the ClarityCheck decision workflow."""
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Stage = Literal["intake", "research", "recommendation"]
Confidence = Literal["low", "medium", "high"]
FollowUpMode = Literal["clarify_existing", "reresearch"]

STAGES: tuple = ("intake", "research", "recommendation")
CONFIDENCE_LEVELS: tuple = ("low", "medium", "high")


def _coerce_text(v: Any) -> Any:
    """Models sometimes answer with numbers or lists where text is expected."""
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, list):
        return ", ".join(str(item) for item in v if item is not None)
    return v


def _coerce_text_list(v: Any) -> Any:
    if v is None:
        return []
    if isinstance(v, str):
        return [v]
    if isinstance(v, list):
        return [str(item) for item in v if item is not None]
    return v


def _coerce_confidence(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip().lower()
    return v


class IntakeState(BaseModel):
    """Structured pre-research context gathered from the user."""

    goal: Optional[str] = Field(None, description="The decision to be made")
    options_scope: Optional[str] = Field(
        None, description="Options currently under consideration"
    )
    constraints: List[str] = Field(
        default_factory=list, description="Hard constraints, deduplicated"
    )
    timeline: Optional[str] = Field(None, description="Deadline or decision timeline")
    risk_tolerance: Optional[str] = Field(None, description="low, medium or high")
    success_criteria: Optional[str] = Field(
        None, description="How a good outcome is defined"
    )
    must_avoid: Optional[str] = Field(None, description="Outcomes to rule out")

    @field_validator(
        "goal",
        "options_scope",
        "timeline",
        "risk_tolerance",
        "success_criteria",
        "must_avoid",
        mode="before",
    )
    @classmethod
    def coerce_scalars(cls, v):
        return _coerce_text(v)

    @field_validator("constraints", mode="before")
    @classmethod
    def coerce_constraints(cls, v):
        return _coerce_text_list(v)


class ResearchState(BaseModel):
    """Queries used by the most recent research pass."""

    queries: List[str] = Field(default_factory=list)
    last_research_at: Optional[str] = Field(
        None, description="ISO 8601 timestamp of the last research pass"
    )


class RecommendationState(BaseModel):
    """The recommendation currently standing for a decision."""

    recommended_option: str
    confidence: Confidence = "medium"
    rationale: str
    updated_at: str = Field(..., description="ISO 8601 timestamp")

    @field_validator("confidence", mode="before")
    @classmethod
    def lower_confidence(cls, v):
        return _coerce_confidence(v)


class RuntimeState(BaseModel):
    """Per-decision workflow state, rewritten after every sub-step of a turn."""

    stage: Stage = "intake"
    intake: IntakeState = Field(default_factory=IntakeState)
    research: ResearchState = Field(default_factory=ResearchState)
    recommendation: Optional[RecommendationState] = None


class SearchResultItem(BaseModel):
    """A raw web search hit."""

    title: str = ""
    url: str = ""
    snippet: str = ""
    published_date: Optional[str] = None
    provider: str


class RankedSearchResult(SearchResultItem):
    """A search hit with its ranking score and 1-based rank."""

    score: int
    rank: int


class WebSearchResult(BaseModel):
    """Results of one query against the first search provider that answered."""

    query: str
    provider_used: str
    results: List[SearchResultItem] = Field(default_factory=list)


class FetchedPage(BaseModel):
    """Extracted text of a fetched page and which path produced it."""

    url: str
    source: Literal["jina", "direct"]
    content: str


# Structured model outputs


class IntakeAnalysis(BaseModel):
    """Intake fields extracted from the conversation plus follow-up questions."""

    acknowledgement: str = Field(
        "", description="One or two sentences acknowledging what the user said"
    )
    extracted: IntakeState = Field(default_factory=IntakeState)
    questions: List[str] = Field(default_factory=list, description="At most 4")

    @field_validator("acknowledgement", mode="before")
    @classmethod
    def coerce_ack(cls, v):
        return _coerce_text(v) or ""

    @field_validator("questions", mode="before")
    @classmethod
    def cap_questions(cls, v):
        return _coerce_text_list(v)[:4]


class QueryPlan(BaseModel):
    """Search queries proposed by the model."""

    queries: List[str] = Field(default_factory=list)

    @field_validator("queries", mode="before")
    @classmethod
    def coerce_queries(cls, v):
        return _coerce_text_list(v)


class RecommendationDraft(BaseModel):
    """Structured recommendation produced from an evidence bundle."""

    recommendation: str = Field(..., min_length=1)
    confidence: Confidence = "medium"
    rationale: str
    tradeoffs: List[str] = Field(..., min_length=1)
    rejected_alternatives: List[str] = Field(default_factory=list)
    change_triggers: List[str] = Field(default_factory=list)
    response: str = Field(..., description="Narrative answer citing [S#] tags")

    @field_validator("confidence", mode="before")
    @classmethod
    def lower_confidence(cls, v):
        return _coerce_confidence(v)

    @field_validator(
        "tradeoffs", "rejected_alternatives", "change_triggers", mode="before"
    )
    @classmethod
    def cap_lists(cls, v):
        return _coerce_text_list(v)[:6]


class FollowUpClassification(BaseModel):
    """Whether a recommendation-stage follow-up needs new research."""

    mode: FollowUpMode
    reason: str = ""

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_").replace(" ", "_")
        return v


class OptionConsidered(BaseModel):
    """One option weighed during a decision."""

    option: str
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)

    @field_validator("pros", "cons", mode="before")
    @classmethod
    def coerce_lists(cls, v):
        return _coerce_text_list(v)


class DecisionSummary(BaseModel):
    """Structured summary of a finished decision thread."""

    title: str = Field(..., min_length=1)
    user_goal: str
    constraints: List[str] = Field(default_factory=list)
    options_considered: List[OptionConsidered] = Field(default_factory=list)
    recommended_option: str
    rationale: str
    confidence: Confidence = "medium"

    @field_validator("constraints", mode="before")
    @classmethod
    def coerce_constraints(cls, v):
        return _coerce_text_list(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def lower_confidence(cls, v):
        return _coerce_confidence(v)
