"""Factory helpers for task-specific provider construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from slacknote.providers.litellm_provider import LiteLLMProvider

if TYPE_CHECKING:
    from slacknote.config.schema import Config, ModelProfile
    from slacknote.providers.base import LLMProvider


@dataclass(slots=True)
class ProviderFactory:
    """Build scoped provider instances for routed task models."""

    config: "Config"

    def resolve_profile(self, route_key: str) -> tuple[str, "ModelProfile"]:
        """Return ``(profile_name, profile)`` for a capability route."""
        route_name = self.config.models.routes.get(route_key)
        if not route_name:
            raise ValueError(f"models.routes missing '{route_key}'")
        profile = self.config.models.profiles.get(route_name)
        if profile is None:
            raise ValueError(f"models.routes['{route_key}'] points to missing profile '{route_name}'")
        if not profile.model:
            raise ValueError(f"profile '{route_name}' does not define a model")
        return route_name, profile

    def create_chat_provider(self, model: str) -> "LLMProvider":
        """Create a provider bound to the supplied model."""
        provider_cfg = self.config.providers.openai
        return LiteLLMProvider(
            api_key=provider_cfg.api_key or None,
            api_base=provider_cfg.api_base,
            default_model=model,
            extra_headers=provider_cfg.extra_headers,
        )
