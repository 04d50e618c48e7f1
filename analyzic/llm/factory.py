"""Model backend factory.

Resolves a provider id plus model tier to the appropriate backend.
"""

import logging
from typing import Optional, Union

from analyzic.errors import ConfigurationError
from analyzic.llm.backends import AnthropicBackend, GeminiBackend, OpenAIBackend
from analyzic.llm.tiers import ModelTier, ModelTierConfig, resolve_model

logger = logging.getLogger(__name__)

BACKEND_CLASSES = {
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
    "gemini": GeminiBackend,
}


def get_backend(
    provider_id: str,
    api_key: str,
    tier: Optional[ModelTier],
    tier_config: ModelTierConfig,
) -> Union[OpenAIBackend, AnthropicBackend, GeminiBackend]:
    """Get the backend for a provider at the requested tier.

    Args:
        provider_id: 'openai', 'anthropic' or 'gemini'
        api_key: Credential for the provider
        tier: Model tier (defaults to tier1)
        tier_config: provider -> tier -> model name

    Returns:
        Backend instance bound to the resolved model

    Raises:
        ConfigurationError: Unknown provider, missing key, or missing tier model
    """
    backend_cls = BACKEND_CLASSES.get(provider_id)
    if backend_cls is None:
        raise ConfigurationError(
            f"Unknown provider: '{provider_id}'. "
            f"Expected one of: {', '.join(BACKEND_CLASSES)}."
        )
    if not api_key:
        raise ConfigurationError(f"Provider {provider_id} not configured (missing API key)")

    model_id = resolve_model(provider_id, tier, tier_config)
    logger.info(f"Configured {provider_id} backend with model {model_id}")
    return backend_cls(model_id=model_id, api_key=api_key)
