"""
Answer types: desired response shape, its guidance and sampling suggestions.
"""

import re


ANSWER_TYPE_GUIDANCE: dict[str, str] = {
    "auto": "Respond in whatever format best suits the question.",
    "short": (
        "Response format: SHORT. Answer directly in 2-4 sentences. "
        "If code is needed, show only the essential part."
    ),
    "detailed": (
        "Response format: DETAILED. Cover the reasoning, examples, edge cases "
        "and practical next steps."
    ),
    "step-by-step": (
        "Response format: STEP-BY-STEP. Use numbered steps in the form "
        "'**Step N: <action>**' followed by a short explanation, and finish "
        "with how to verify the result."
    ),
    "checklist": (
        "Response format: CHECKLIST. Present specific, ordered action items "
        "as '- [ ]' checkboxes, nesting sub-items where needed."
    ),
    "code-only": (
        "Response format: CODE-ONLY. Return working code in fenced blocks "
        "with only essential inline comments and at most one line of usage notes."
    ),
    "explain-simple": (
        "Response format: SIMPLE. Explain for a 12-year-old using everyday "
        "analogies and no unexplained jargon."
    ),
    "bullet-points": (
        "Response format: BULLET POINTS. One idea per bullet, most important "
        "first, sub-bullets for supporting detail."
    ),
    "pros-cons": (
        "Response format: PROS & CONS. List '**Pros:**' and '**Cons:**' "
        "separately, then give a '**Recommendation:**'."
    ),
}

ANSWER_TYPES: tuple[str, ...] = tuple(ANSWER_TYPE_GUIDANCE)

SUGGESTED_MAX_TOKENS: dict[str, int] = {
    "auto": 2048,
    "short": 512,
    "detailed": 4096,
    "step-by-step": 3072,
    "checklist": 2048,
    "code-only": 3072,
    "explain-simple": 2048,
    "bullet-points": 1536,
    "pros-cons": 2048,
}

SUGGESTED_TEMPERATURES: dict[str, float] = {
    "auto": 0.7,
    "short": 0.5,
    "detailed": 0.7,
    "step-by-step": 0.4,
    "checklist": 0.4,
    "code-only": 0.2,
    "explain-simple": 0.8,
    "bullet-points": 0.5,
    "pros-cons": 0.6,
}

RECOMMENDED_ANSWER_TYPES: dict[str, tuple[str, ...]] = {
    "coding": ("code-only", "step-by-step", "checklist", "short"),
    "meeting": ("short", "bullet-points", "pros-cons"),
    "research": ("detailed", "bullet-points", "step-by-step"),
    "auto": ("auto", "short", "detailed"),
}


def get_answer_type_guidance(answer_type: str | None) -> str:
    if not answer_type:
        return ""
    return ANSWER_TYPE_GUIDANCE.get(answer_type, ANSWER_TYPE_GUIDANCE["auto"])


def get_suggested_max_tokens(answer_type: str) -> int:
    return SUGGESTED_MAX_TOKENS.get(answer_type, 2048)


def get_suggested_temperature(answer_type: str) -> float:
    return SUGGESTED_TEMPERATURES.get(answer_type, 0.7)


def recommended_answer_types(mode: str) -> tuple[str, ...]:
    """Answer types that usually fit a conversation mode."""
    return RECOMMENDED_ANSWER_TYPES.get(mode, RECOMMENDED_ANSWER_TYPES["auto"])


def validate_answer_shape(text: str, answer_type: str) -> list[str]:
    """
    Check that a response roughly matches the requested answer type.

    This is an optional quality check, not a parser.

    Args:
        text: Response text
        answer_type: Requested answer type

    Returns:
        List of issues (empty when the response looks right)
    """
    issues = []

    if answer_type == "short":
        sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
        if len(sentences) > 6:
            issues.append("Response is longer than expected for 'short' format")

    elif answer_type == "step-by-step":
        if not re.search(r"\*\*Step \d+:", text, re.IGNORECASE) and not re.search(
            r"^\d+\.", text, re.MULTILINE
        ):
            issues.append("Response doesn't contain numbered steps")

    elif answer_type == "checklist":
        if "- [ ]" not in text and "- [x]" not in text:
            issues.append("Response doesn't contain checklist items")

    elif answer_type == "code-only":
        code_length = sum(len(block) for block in re.findall(r"```[\s\S]*?```", text))
        if code_length < len(text) * 0.5:
            issues.append("Response should be mostly code with minimal explanation")

    elif answer_type == "pros-cons":
        if not re.search(r"\*\*Pros", text, re.IGNORECASE) or not re.search(
            r"\*\*Cons", text, re.IGNORECASE
        ):
            issues.append("Response should have clear Pros and Cons sections")

    elif answer_type == "bullet-points":
        if not re.search(r"^[-*•]", text, re.MULTILINE):
            issues.append("Response should use bullet point format")

    return issues
