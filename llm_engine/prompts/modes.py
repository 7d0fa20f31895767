"""
Conversation modes: system guidance and sampling suggestions per mode.
"""

from dataclasses import dataclass


BASE_GUIDANCE = (
    "You are a desktop assistant with access to the user's screen context, "
    "meeting transcripts and recent session history. Be concise but complete, "
    "give concrete next steps, and never encourage deceptive behaviour."
)


@dataclass(frozen=True)
class ModeConfig:
    """Configuration for a conversation mode."""
    mode: str
    guidance: str
    suggested_temperature: float
    suggested_max_tokens: int
    preferred_models: tuple[str, ...]
    enable_streaming: bool = True


MODE_CONFIGS: dict[str, ModeConfig] = {
    "auto": ModeConfig(
        mode="auto",
        guidance=(
            f"{BASE_GUIDANCE}\n\n"
            "Mode: AUTO. Infer whether the user is coding, in a meeting or "
            "researching from the available context and adapt accordingly."
        ),
        suggested_temperature=0.7,
        suggested_max_tokens=2048,
        preferred_models=("deepseek-chat", "gpt-4o", "claude-3-5-sonnet-20241022"),
    ),
    "coding": ModeConfig(
        mode="coding",
        guidance=(
            f"{BASE_GUIDANCE}\n\n"
            "Mode: CODING. Give precise, production-ready code, follow the "
            "conventions visible in the user's code, and when debugging name "
            "the root cause before the fix."
        ),
        suggested_temperature=0.3,
        suggested_max_tokens=4096,
        preferred_models=("deepseek-chat", "gpt-4o", "claude-3-5-sonnet-20241022"),
    ),
    "meeting": ModeConfig(
        mode="meeting",
        guidance=(
            f"{BASE_GUIDANCE}\n\n"
            "Mode: MEETING. Keep suggestions short and natural, help the user "
            "say what they actually mean, and separate facts from opinions "
            "when checking claims."
        ),
        suggested_temperature=0.8,
        suggested_max_tokens=1024,
        preferred_models=("deepseek-reasoner", "gpt-4o", "claude-3-5-sonnet-20241022"),
    ),
    "research": ModeConfig(
        mode="research",
        guidance=(
            f"{BASE_GUIDANCE}\n\n"
            "Mode: RESEARCH. Synthesize across sources, keep important "
            "caveats, explain from simple to complex and point out gaps "
            "worth following up."
        ),
        suggested_temperature=0.6,
        suggested_max_tokens=3072,
        preferred_models=("deepseek-chat", "gpt-4o", "claude-3-5-sonnet-20241022"),
    ),
}

MODES: tuple[str, ...] = tuple(MODE_CONFIGS)


def get_mode_config(mode: str) -> ModeConfig:
    """Return the config for ``mode``, falling back to auto."""
    return MODE_CONFIGS.get(mode, MODE_CONFIGS["auto"])


def get_mode_guidance(mode: str | None) -> str:
    if not mode:
        return ""
    return get_mode_config(mode).guidance


@dataclass
class ModeSignals:
    """Context signals used to pick a mode automatically."""
    has_code: bool = False
    has_terminal: bool = False
    has_ide: bool = False
    has_meeting_app: bool = False
    has_active_transcript: bool = False
    has_browser: bool = False
    has_document: bool = False


def detect_mode(signals: ModeSignals) -> str:
    """
    Pick a conversation mode from context signals.

    Meeting wins when a transcript is active inside a meeting app, coding
    needs an IDE or terminal together with visible code, and a browser or
    document points to research. Everything else is auto.
    """
    if signals.has_active_transcript and signals.has_meeting_app:
        return "meeting"
    if (signals.has_ide or signals.has_terminal) and signals.has_code:
        return "coding"
    if signals.has_browser or signals.has_document:
        return "research"
    return "auto"
