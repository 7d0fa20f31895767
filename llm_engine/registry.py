"""
Model registry and model recommendation.

Holds every registered provider and the union of their model descriptors,
and picks a model for a conversation mode and routing profile.
"""

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from .errors import ErrorCode, LLMError
from .models import ModelDescriptor
from .prompts import get_mode_config

if TYPE_CHECKING:
    from .adapters.base import ProviderAdapter


Profile = Literal["speed", "balanced", "quality", "local", "custom"]


@dataclass
class SearchCriteria:
    """Filters for ``ModelRegistry.search``; unset fields match everything."""
    capability: str | None = None
    recommended_use: str | None = None
    cost_tier: str | None = None
    min_context_window: int | None = None
    streaming: bool | None = None
    provider: str | None = None


class ModelRegistry:
    """
    Registry of providers and their models.

    Resolution order for ``recommend``:
    1. First registered model in the profile's priority list
    2. First registered model in the mode's preferred list
    3. Configured default model id

    Registration is serialized by a re-entrant lock; reads return copies.
    """

    # Profile to model priority, most preferred first
    PROFILE_ROUTES: dict[str, list[str]] = {
        "speed": ["deepseek-chat", "gpt-4o-mini"],
        "balanced": ["deepseek-chat", "gpt-4o"],
        "quality": ["deepseek-reasoner", "gpt-4o", "claude-3-5-sonnet-20241022"],
        # Resolved dynamically to registered free models
        "local": [],
        "custom": [],
    }

    def __init__(
        self,
        default_model: str = "deepseek-chat",
        pricing_overrides: dict[str, dict[str, tuple[float, float]]] | None = None,
    ):
        """
        Initialize ModelRegistry.

        Args:
            default_model: Model id returned when nothing else matches
            pricing_overrides: provider -> model -> (input, output) USD per 1M
        """
        self.default_model = default_model
        self._pricing_overrides = pricing_overrides or {}
        self._models: dict[str, ModelDescriptor] = {}
        self._providers: dict[str, "ProviderAdapter"] = {}
        self._lock = threading.RLock()

    def register_provider(self, provider: "ProviderAdapter") -> list[ModelDescriptor]:
        """
        Register a provider and ingest its model descriptors.

        Re-registering a provider id replaces it; a model id already present
        is overwritten by the newer descriptor.

        Returns:
            The descriptors that were registered (after pricing overrides)
        """
        with self._lock:
            self._providers[provider.id] = provider
            return [self.register_model(model) for model in provider.models]

    def register_model(self, model: ModelDescriptor) -> ModelDescriptor:
        override = self._pricing_overrides.get(model.provider, {}).get(model.id)
        if override is not None:
            model = model.with_pricing(*override)
        with self._lock:
            self._models[model.id] = model
        return model

    def get_model(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)

    def require_model(self, model_id: str) -> ModelDescriptor:
        """
        Look up a model, raising when it is not registered.

        Raises:
            LLMError: MODEL_NOT_FOUND
        """
        model = self._models.get(model_id)
        if model is None:
            raise LLMError(
                "registry",
                f"Model not found: {model_id}",
                code=ErrorCode.MODEL_NOT_FOUND,
            )
        return model

    def get_provider(self, provider_id: str) -> "ProviderAdapter | None":
        return self._providers.get(provider_id)

    def providers(self) -> list["ProviderAdapter"]:
        with self._lock:
            return list(self._providers.values())

    def all_models(self) -> list[ModelDescriptor]:
        with self._lock:
            return list(self._models.values())

    def models_by_provider(self, provider_id: str) -> list[ModelDescriptor]:
        return [m for m in self.all_models() if m.provider == provider_id]

    def recommend(self, mode: str = "auto", profile: str = "balanced") -> str:
        """
        Recommend a model id for a mode and routing profile.

        Never fails: falls back to the configured default model id even if
        that model is not registered.

        Args:
            mode: Conversation mode (auto, coding, meeting, research)
            profile: Routing profile (speed, balanced, quality, local, custom)

        Returns:
            Model id
        """
        if profile == "local":
            for model in self.all_models():
                if model.is_free and not model.deprecated:
                    return model.id

        for model_id in self.PROFILE_ROUTES.get(profile, []):
            if model_id in self._models:
                return model_id

        for model_id in get_mode_config(mode).preferred_models:
            if model_id in self._models:
                return model_id

        return self.default_model

    def search(self, criteria: SearchCriteria | None = None) -> list[ModelDescriptor]:
        """
        Filter registered, non-deprecated models.

        Args:
            criteria: Filters to apply; None returns every active model

        Returns:
            Matching descriptors in registration order
        """
        criteria = criteria or SearchCriteria()
        results = []
        for model in self.all_models():
            if model.deprecated:
                continue
            if criteria.capability and criteria.capability not in model.capabilities:
                continue
            if criteria.recommended_use and criteria.recommended_use not in model.recommended_use:
                continue
            if criteria.cost_tier and model.cost_tier != criteria.cost_tier:
                continue
            if (
                criteria.min_context_window is not None
                and model.context_window < criteria.min_context_window
            ):
                continue
            if criteria.streaming is not None and model.supports_streaming != criteria.streaming:
                continue
            if criteria.provider and model.provider != criteria.provider:
                continue
            results.append(model)
        return results

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)
