"""Prompt text for every model-calling step of the decision workflow."""
from typing import Optional, Sequence

from decision_store.schema import Message, Source
from models.schema import IntakeState, RecommendationState

SYSTEM_PROMPT = """You are ClarityCheck, a rigorous decision assistant.

Operating contract:
1) Goal first: identify the user's desired decision outcome and constraints.
2) Evidence: base recommendations on the research evidence you are given and cite it by tag, e.g. [S1] or [F2].
3) Hard questions: ask concise, high-leverage clarification questions only when missing information would materially change the recommendation.
4) Decision quality: give options, tradeoffs, a recommendation, confidence, and why alternatives were rejected.

Style:
- Direct, calm, professional.
- No fluff, no hedging loops.
- Keep responses concise but complete for the decision at hand."""

TRANSCRIPT_MAX_CHARS = 18_000
INTAKE_HISTORY_MESSAGES = 12


def format_intake(intake: IntakeState) -> str:
    def show(value: Optional[str]) -> str:
        return value if value else "(unknown)"

    constraints = "; ".join(intake.constraints) if intake.constraints else "(unknown)"
    return "\n".join(
        [
            f"- Goal: {show(intake.goal)}",
            f"- Options in scope: {show(intake.options_scope)}",
            f"- Constraints: {constraints}",
            f"- Timeline: {show(intake.timeline)}",
            f"- Risk tolerance: {show(intake.risk_tolerance)}",
            f"- Success criteria: {show(intake.success_criteria)}",
            f"- Must avoid: {show(intake.must_avoid)}",
        ]
    )


def format_recommendation(recommendation: Optional[RecommendationState]) -> str:
    if recommendation is None:
        return "(none yet)"
    return (
        f"- Recommended option: {recommendation.recommended_option}\n"
        f"- Confidence: {recommendation.confidence}\n"
        f"- Rationale: {recommendation.rationale}"
    )


def format_transcript(
    messages: Sequence[Message], max_chars: int = TRANSCRIPT_MAX_CHARS
) -> str:
    transcript = "\n\n".join(
        f"{message.role.upper()}: {message.content}" for message in messages
    )
    return transcript[:max_chars]


def format_sources(sources: Sequence[Source]) -> str:
    if not sources:
        return "(no sources recorded)"
    return "\n".join(
        f"[S{index}] {source.title} - {source.url}"
        for index, source in enumerate(sources, start=1)
    )


def intake_analysis_prompt(intake: IntakeState, history: Sequence[Message]) -> str:
    recent = list(history)[-INTAKE_HISTORY_MESSAGES:]
    return f"""We are gathering intake for a decision before doing any research.

Intake captured so far:
{format_intake(intake)}

Recent conversation:
{format_transcript(recent)}

Tasks:
1. Extract any intake fields the user has stated or clearly implied (goal, options_scope, constraints, timeline, risk_tolerance, success_criteria, must_avoid). Leave a field empty if it is not known. Do not invent values.
2. Write a one or two sentence acknowledgement of what the user just told you.
3. Propose up to 4 short questions for the most important information that is still missing."""


def query_plan_prompt(intake: IntakeState, latest_user_text: str) -> str:
    return f"""Plan web research for this decision.

Intake:
{format_intake(intake)}

Latest user message:
{latest_user_text or "(none)"}

Return 3 to 6 distinct, non-overlapping web search queries. Each query should target a different angle: current facts and prices, comparisons between the options, risks and failure modes, and recent changes. Keep each query under 12 words."""


def synthesis_prompt(
    evidence_text: str,
    intake: IntakeState,
    prior: Optional[RecommendationState],
) -> str:
    return f"""Produce a decision recommendation from the research evidence below.

Intake:
{format_intake(intake)}

Previous recommendation:
{format_recommendation(prior)}

Evidence:
{evidence_text}

Requirements:
- recommendation: the option you recommend, stated plainly.
- confidence: low, medium or high, reflecting evidence quality and fit with the constraints.
- rationale: why this option best meets the goal and constraints.
- tradeoffs: 1 to 6 tradeoffs the user accepts with this choice.
- rejected_alternatives: up to 6 alternatives and why each was rejected.
- change_triggers: up to 6 developments that would change this recommendation.
- response: a concise narrative answer to the user that cites evidence by tag, e.g. [S1] or [F1]. If the recommendation differs from the previous one, say what changed."""


def classification_prompt(
    latest_user_text: str,
    intake: IntakeState,
    recommendation: Optional[RecommendationState],
) -> str:
    return f"""A recommendation has already been given for this decision.

Intake:
{format_intake(intake)}

Current recommendation:
{format_recommendation(recommendation)}

User follow-up:
{latest_user_text}

Classify the follow-up:
- "clarify_existing": the user asks about, or reacts to, the existing recommendation and it can be answered from what we already know.
- "reresearch": the user adds new facts, changes constraints or options, or asks something that needs fresh evidence.

Return the mode and a short reason."""


def clarify_prompt(
    latest_user_text: str,
    intake: IntakeState,
    recommendation: Optional[RecommendationState],
    sources: Sequence[Source],
) -> str:
    return f"""Answer the user's follow-up using only the existing decision context below. Do not introduce new facts that are not supported by it. If the question cannot be answered from this context, say so and suggest what new information would help.

Intake:
{format_intake(intake)}

Current recommendation:
{format_recommendation(recommendation)}

Sources checked:
{format_sources(sources)}

User follow-up:
{latest_user_text}"""


def completion_prompt(messages: Sequence[Message], outcome_note: Optional[str] = None) -> str:
    outcome_line = f"\nOutcome note from user: {outcome_note}" if outcome_note else ""
    return f"""Summarize this completed decision conversation into structured fields.
Focus on concrete constraints, options evaluated, recommendation, and rationale.
{outcome_line}

Transcript:
{format_transcript(messages)}"""


def completion_json_prompt(
    messages: Sequence[Message], outcome_note: Optional[str] = None
) -> str:
    """Free-text variant used when structured output fails."""
    return (
        completion_prompt(messages, outcome_note)
        + """

Reply with only a JSON object with these keys: "title", "user_goal", "constraints" (list of strings), "options_considered" (list of {"option", "pros", "cons"}), "recommended_option", "rationale", "confidence" ("low", "medium" or "high")."""
    )
