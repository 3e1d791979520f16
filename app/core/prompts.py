"""
Centralized AI Prompt Repository
- Ensures consistency across domains
- Facilitates auditing and refinement
- Decouples prompts from business logic
"""

from typing import Dict, List

# --- REVIEW GENERATION PROMPTS ---
REVIEW_SYSTEM_TEMPLATE = """You are an expert HR professional writing a {review_type} performance review draft.

STRICT RULES:
1. Base EVERY statement on the evidence provided below (OKRs, feedback, prior reviews, retrieved context).
2. NEVER invent projects, numbers, names, dates or events that are not in the evidence.
3. When a statement relies on an evidence item, cite it inline with its marker, e.g. [okr:12] or [feedback:7].
4. Keep a {tone} tone. Be specific, balanced and actionable.
5. If the evidence for a section is thin, say so plainly instead of filling it with generic praise.
{type_guidelines}
OUTPUT FORMAT:
Return ONLY a JSON object with exactly these keys (one paragraph each):
{{
  "strengths": "...",
  "areas_for_improvement": "...",
  "achievements": "...",
  "goals_for_next_period": "...",
  "development_plan": "...",
  "certainty": 0.0-1.0
}}
"certainty" is your own estimate of how well the evidence supports the draft."""

REVIEW_STRICT_RETRY = (
    "Your previous answer could not be parsed. Return valid structured output only: "
    "a single JSON object with the keys strengths, areas_for_improvement, achievements, "
    "goals_for_next_period, development_plan and certainty. No markdown, no commentary."
)

REVIEW_USER_TEMPLATE = """EMPLOYEE:
Name: {employee_name}
Role: {job_title}
Department: {department}
Review window: {window_start} to {window_end}
Focus areas: {focus_areas}

EVIDENCE QUALITY: {quality_overall:.0f}/100

OKRS:
{okr_digest}

FEEDBACK RECEIVED:
{feedback_digest}

PRIOR REVIEWS:
{review_digest}

RELEVANT CONTEXT (semantic search):
{context_digest}

Write the review draft now."""

REVIEW_TYPE_GUIDELINES: Dict[str, str] = {
    "manager": (
        "MANAGER REVIEW: assess performance against objectives, leadership and collaboration, "
        "give career guidance and set clear expectations for the next period."
    ),
    "self": (
        "SELF-ASSESSMENT: encourage honest reflection, recognise self-reported achievements "
        "and support personal goal setting."
    ),
    "peer": (
        "PEER REVIEW: focus on collaboration, communication and cross-functional contributions."
    ),
    "360": (
        "360-DEGREE REVIEW: synthesise themes across perspectives and address conflicting feedback fairly."
    ),
    "upward": (
        "UPWARD REVIEW: focus on leadership effectiveness, mentoring and team support."
    ),
}

DEFAULT_FOCUS_AREAS: Dict[str, List[str]] = {
    "manager": ["leadership", "goal achievement", "team collaboration", "performance", "development"],
    "self": ["self-reflection", "personal growth", "achievements", "challenges", "goals"],
    "peer": ["collaboration", "communication", "teamwork", "support", "knowledge sharing"],
    "360": ["leadership", "communication", "collaboration", "performance", "development"],
    "upward": ["management style", "support", "communication", "leadership", "team development"],
}

REVIEW_TONES: Dict[str, str] = {
    "manager": "professional, supportive and direct",
    "self": "reflective and first-person",
    "peer": "collegial and appreciative",
    "360": "balanced and synthesising",
    "upward": "respectful and candid",
}

# Offered instead of a generated draft when there is no evidence at all
EMPTY_EVIDENCE_TEMPLATE: Dict[str, str] = {
    "strengths": "No OKRs, feedback or prior reviews were recorded for this period. Describe observed strengths here.",
    "areas_for_improvement": "Describe areas for growth, with concrete examples.",
    "achievements": "List key accomplishments for the period.",
    "goals_for_next_period": "Agree specific, measurable goals for the next period.",
}

# --- CONTEXT RETRIEVAL ---
RETRIEVAL_QUERY_TEMPLATE = (
    "Performance review ({review_type}) for a {job_title}. "
    "Focus: {focus_areas}. Evidence: {digest}"
)

# --- SENTIMENT / BIAS PROMPTS ---
SENTIMENT_SYSTEM = """Analyze workplace feedback for tone, quality, specificity, actionability and bias.
Look for gender, racial, age or appearance bias, favoritism and recency bias.

Return ONLY JSON:
{"tone": "positive|neutral|constructive|negative",
 "quality": 0-100, "specificity": 0-100, "actionability": 0-100,
 "bias_indicators": ["..."], "keywords": ["..."], "summary": "one sentence"}"""

SENTIMENT_USER_TEMPLATE = 'Feedback text:\n"""{text}"""'

FEEDBACK_IMPROVEMENT_SYSTEM = """Rewrite workplace feedback so it is specific, actionable and balanced.
Keep every fact the author states and add none. Remove biased or personal remarks.

Return ONLY JSON:
{"improved": "the rewritten feedback", "changes": ["one short line per change made"]}"""

FEEDBACK_IMPROVEMENT_STRICT_RETRY = (
    "Your previous answer could not be parsed. Return a single JSON object with the keys "
    "improved and changes only. No markdown, no commentary."
)

# --- CONTENT VALIDATION ---
VALIDATION_SYSTEM = """You check a performance review draft against the sources it was written from.
A claim is unsupported when no source states it, or when the draft overstates or misrepresents a source.

Return ONLY JSON:
{"is_valid": true|false,
 "unsupported_claims": ["each claim the sources do not support, quoted from the draft"],
 "notes": "one sentence"}
"is_valid" is true only when "unsupported_claims" is empty."""

VALIDATION_USER_TEMPLATE = """DRAFT:
{content}

SOURCES:
{sources}"""

VALIDATION_STRICT_RETRY = (
    "Your previous answer could not be parsed. Return a single JSON object with the keys "
    "is_valid, unsupported_claims and notes only. No markdown, no commentary."
)

# helper to build prompts
def get_prompt(template: str, **kwargs) -> str:
    return template.format(**kwargs)
