"""Intake normalization, merging and completeness rules."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.schema import (CONFIDENCE_LEVELS, STAGES, IntakeState,
                           RecommendationState, ResearchState, RuntimeState)

MAX_CONSTRAINTS = 14
MAX_QUESTIONS = 4
MIN_FIELD_LENGTH = 2

# Canonical order; missing fields and questions are always reported in it.
REQUIRED_INTAKE_FIELDS = (
    "goal",
    "options_scope",
    "constraints",
    "timeline",
    "risk_tolerance",
    "success_criteria",
)

INTAKE_FIELD_LABELS = {
    "goal": "decision goal",
    "options_scope": "options under consideration",
    "constraints": "hard constraints",
    "timeline": "timeline",
    "risk_tolerance": "risk tolerance",
    "success_criteria": "success criteria",
}

INTAKE_QUESTIONS = {
    "goal": "What exact decision do you want to make?",
    "options_scope": "Which options are currently on the table?",
    "constraints": "What are your hard constraints (budget, non-negotiables, limits)?",
    "timeline": "What is your deadline or decision timeline?",
    "risk_tolerance": "How much risk are you willing to accept: low, medium, or high?",
    "success_criteria": "How will we define a successful outcome?",
}

_SCALAR_FIELDS = (
    "goal",
    "options_scope",
    "timeline",
    "risk_tolerance",
    "success_criteria",
    "must_avoid",
)


def _trim_or_none(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_string_list(values: List[str], limit: int = MAX_CONSTRAINTS) -> List[str]:
    """Trim, drop empties, dedupe case-insensitively keeping first seen, cap."""
    output: List[str] = []
    seen = set()
    for value in values:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if not trimmed:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        output.append(trimmed)
    return output[:limit]


def normalize_intake(
    intake: Optional[IntakeState], fallback_goal: Optional[str] = None
) -> IntakeState:
    """Return a trimmed copy of ``intake`` with a clean constraints list.

    Args:
        intake: Intake to normalize (None yields an empty intake)
        fallback_goal: Used as the goal when the intake has none

    Returns:
        New IntakeState; the input is not modified
    """
    intake = intake or IntakeState()
    fields = {name: _trim_or_none(getattr(intake, name)) for name in _SCALAR_FIELDS}
    if fields["goal"] is None:
        fields["goal"] = _trim_or_none(fallback_goal)
    return IntakeState(constraints=normalize_string_list(intake.constraints), **fields)


def merge_intake(current: IntakeState, patch: IntakeState) -> IntakeState:
    """Merge ``patch`` into ``current``.

    Constraints are additive: ``current + patch`` then normalized. Every
    other field in the patch overrides only when present and non-empty.
    """
    merged = {name: getattr(current, name) for name in _SCALAR_FIELDS}
    for name in _SCALAR_FIELDS:
        value = _trim_or_none(getattr(patch, name))
        if value is not None:
            merged[name] = value
    constraints = list(current.constraints) + list(patch.constraints)
    return normalize_intake(IntakeState(constraints=constraints, **merged))


def missing_intake_fields(intake: IntakeState) -> List[str]:
    missing = []
    for name in REQUIRED_INTAKE_FIELDS:
        if name == "constraints":
            if not intake.constraints:
                missing.append(name)
            continue
        value = getattr(intake, name)
        if not isinstance(value, str) or len(value.strip()) < MIN_FIELD_LENGTH:
            missing.append(name)
    return missing


def intake_progress(intake: IntakeState) -> float:
    total = len(REQUIRED_INTAKE_FIELDS)
    missing = len(missing_intake_fields(intake))
    return max(0.0, min(1.0, (total - missing) / total))


def is_intake_complete(intake: IntakeState) -> bool:
    return not missing_intake_fields(intake)


def missing_fields_to_questions(missing: List[str]) -> List[str]:
    """Map missing fields to their fixed clarifying questions (max 4)."""
    questions = [
        INTAKE_QUESTIONS[name] for name in REQUIRED_INTAKE_FIELDS if name in missing
    ]
    return questions[:MAX_QUESTIONS]


def create_empty_runtime_state(user_goal: Optional[str] = None) -> RuntimeState:
    """Fresh intake-stage state; a goal of 4 characters or less is dropped."""
    goal = _trim_or_none(user_goal)
    if goal is not None and len(goal) <= 4:
        goal = None
    return RuntimeState(intake=IntakeState(goal=goal))


def normalize_runtime_state(
    raw: Optional[Dict[str, Any]], fallback_goal: Optional[str] = None
) -> RuntimeState:
    """Build a valid RuntimeState from persisted (possibly stale) JSON data.

    Unknown stages become ``intake``; a partial recommendation is completed
    with defaults rather than discarded.
    """
    if not raw:
        return create_empty_runtime_state(fallback_goal)

    stage = raw.get("stage")
    if stage not in STAGES:
        stage = "intake"

    intake_raw = raw.get("intake") if isinstance(raw.get("intake"), dict) else {}
    intake = IntakeState(
        **{key: intake_raw.get(key) for key in _SCALAR_FIELDS},
        constraints=intake_raw.get("constraints") or [],
    )

    research_raw = raw.get("research") if isinstance(raw.get("research"), dict) else {}
    research = ResearchState(
        queries=normalize_string_list(research_raw.get("queries") or []),
        last_research_at=_trim_or_none(research_raw.get("last_research_at")),
    )

    recommendation = None
    rec_raw = raw.get("recommendation")
    if isinstance(rec_raw, dict):
        confidence = rec_raw.get("confidence")
        if confidence not in CONFIDENCE_LEVELS:
            confidence = "medium"
        recommendation = RecommendationState(
            recommended_option=_trim_or_none(rec_raw.get("recommended_option"))
            or "Unknown",
            confidence=confidence,
            rationale=_trim_or_none(rec_raw.get("rationale"))
            or "No rationale provided.",
            updated_at=_trim_or_none(rec_raw.get("updated_at"))
            or datetime.now(timezone.utc).isoformat(),
        )

    return RuntimeState(
        stage=stage,
        intake=normalize_intake(intake, fallback_goal),
        research=research,
        recommendation=recommendation,
    )
