"""
Per-request JSONL log.

One line per finished request, stored by provider and day in
``logs/{provider}/{YYYY-MM-DD}.jsonl``. Records cover:
- timestamp and duration
- model and prompt preview
- token counts and cost
- success, error message, cache and attempt information
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100


class RequestLogger:
    """JSONL request logger shared by all providers of an engine."""

    def __init__(self, log_dir: str | Path | None = None, enabled: bool | None = None):
        """
        Args:
            log_dir: Root log directory; defaults to ``LLM_ENGINE_LOG_DIR`` or ``logs``
            enabled: Whether to write; None reads ``LLM_ENGINE_LOGGING`` (default off)
        """
        if enabled is None:
            env_value = os.getenv("LLM_ENGINE_LOGGING", "false").lower()
            self.enabled = env_value in ("true", "1", "yes", "on")
        else:
            self.enabled = enabled

        self.log_root = Path(log_dir or os.getenv("LLM_ENGINE_LOG_DIR", "logs"))

    def log_path(self, provider: str, when: datetime | None = None) -> Path:
        day = (when or datetime.now()).strftime("%Y-%m-%d")
        return self.log_root / provider / f"{day}.jsonl"

    def log_request(
        self,
        provider: str,
        model: str,
        prompt: str,
        response_text: str | None,
        input_tokens: int | None,
        output_tokens: int | None,
        duration_ms: float,
        success: bool,
        error_message: str | None = None,
        cost_usd: float | None = None,
        **extra_fields,
    ) -> None:
        """
        Append one request record.

        Args:
            provider: Provider that served (or failed) the request
            model: Model id
            prompt: Prompt text sent
            response_text: Response text, if any
            input_tokens: Prompt tokens
            output_tokens: Completion tokens
            duration_ms: Request duration in milliseconds
            success: Whether the request succeeded
            error_message: Error message on failure
            cost_usd: Cost recorded for the request
            **extra_fields: Additional fields (request_id, stream, from_cache, attempts)
        """
        if not self.enabled:
            return

        now = datetime.now()
        log_entry = {
            "timestamp": now.isoformat(),
            "provider": provider,
            "model": model,
            "prompt_length": len(prompt) if prompt else 0,
            "prompt_preview": prompt[:PREVIEW_CHARS] if prompt else None,
            "response_length": len(response_text) if response_text else 0,
            "response_preview": response_text[:PREVIEW_CHARS] if response_text else None,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": (input_tokens or 0) + (output_tokens or 0),
            "duration_ms": round(duration_ms, 2),
            "success": success,
            "error_message": error_message,
            "cost_usd": cost_usd,
        }
        log_entry.update(extra_fields)

        log_file = self.log_path(provider, now)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(log_entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # A failed log write must not fail the request
            logger.warning("Failed to write request log %s: %s", log_file, e)
