"""
Prompt building: conversation modes, answer types and prompt assembly.
"""

from .answer_types import (
    ANSWER_TYPES,
    get_answer_type_guidance,
    get_suggested_max_tokens,
    get_suggested_temperature,
    recommended_answer_types,
    validate_answer_shape,
)
from .builder import BuiltPrompt, build_prompt, estimate_tokens, resolve_params
from .modes import MODE_CONFIGS, MODES, ModeConfig, ModeSignals, detect_mode, get_mode_config

__all__ = [
    "ANSWER_TYPES",
    "MODES",
    "MODE_CONFIGS",
    "ModeConfig",
    "ModeSignals",
    "BuiltPrompt",
    "build_prompt",
    "resolve_params",
    "estimate_tokens",
    "detect_mode",
    "get_mode_config",
    "get_answer_type_guidance",
    "get_suggested_max_tokens",
    "get_suggested_temperature",
    "recommended_answer_types",
    "validate_answer_shape",
]
