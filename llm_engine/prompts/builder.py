"""
Prompt assembly for completion requests.

Combines a conversation mode, an answer type and the caller's messages into
the message list sent to the provider. Construction is deterministic and
free of side effects: identical inputs always produce identical prompts.
"""

import math
from dataclasses import dataclass
from typing import Sequence

from ..models import GenerationParams, Message, ModelDescriptor
from .answer_types import (
    get_answer_type_guidance,
    get_suggested_max_tokens,
    get_suggested_temperature,
)
from .modes import get_mode_config, get_mode_guidance


# Rough heuristic: ~4 characters per token. Not a tokenizer.
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class BuiltPrompt:
    """Result of prompt assembly."""
    system_prompt: str
    user_prompt: str
    messages: tuple[Message, ...]
    mode: str
    answer_type: str
    token_estimate: int


def estimate_tokens(text_or_messages: str | Sequence[Message]) -> int:
    """
    Approximate token count as ``ceil(characters / 4)``.

    This is a diagnostic figure, not a billing-accurate count.
    """
    if isinstance(text_or_messages, str):
        total_chars = len(text_or_messages)
    else:
        total_chars = sum(len(m.content) for m in text_or_messages)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def build_prompt(
    messages: Sequence[Message],
    mode: str | None = None,
    answer_type: str | None = None,
) -> BuiltPrompt:
    """
    Build the ordered message list for a request.

    Mode guidance and answer-type guidance are joined (in that order) by a
    blank line into one system message placed before the caller's messages.
    The system message is omitted when both are empty.

    Args:
        messages: Caller messages, in conversation order
        mode: Conversation mode (auto, coding, meeting, research)
        answer_type: Desired answer shape

    Returns:
        BuiltPrompt with the final messages and a token estimate
    """
    parts = [get_mode_guidance(mode), get_answer_type_guidance(answer_type)]
    system_prompt = "\n\n".join(part for part in parts if part)

    formatted: list[Message] = []
    if system_prompt:
        formatted.append(Message(role="system", content=system_prompt))
    formatted.extend(messages)

    return BuiltPrompt(
        system_prompt=system_prompt,
        user_prompt=messages[-1].content if messages else "",
        messages=tuple(formatted),
        mode=mode or "auto",
        answer_type=answer_type or "auto",
        token_estimate=estimate_tokens(formatted),
    )


def resolve_params(
    params: GenerationParams,
    mode: str | None,
    answer_type: str | None,
    model: ModelDescriptor,
) -> GenerationParams:
    """
    Resolve effective temperature and max tokens.

    Precedence (highest first):
    1. Explicit request value
    2. Answer type suggestion
    3. Mode suggestion
    4. Model default

    Other parameters pass through unchanged.
    """
    if answer_type:
        temperature = get_suggested_temperature(answer_type)
        max_tokens = get_suggested_max_tokens(answer_type)
    elif mode:
        mode_config = get_mode_config(mode)
        temperature = mode_config.suggested_temperature
        max_tokens = mode_config.suggested_max_tokens
    else:
        temperature = model.default_temperature
        max_tokens = model.max_output_tokens

    suggested = GenerationParams(temperature=temperature, max_tokens=max_tokens)
    return suggested.merge(params)
