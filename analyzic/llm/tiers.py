"""Model tier resolution.

Each provider is constructed with a quality/cost tier. The concrete model
name behind a tier comes from configuration (environment variables), never
from code, so a deployment can move tiers to new models without a release.
"""

import logging
import os
from enum import Enum
from typing import Optional

from analyzic.config import SUPPORTED_PROVIDERS
from analyzic.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    """Quality/cost levels, cheapest first."""
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"


DEFAULT_TIER = ModelTier.TIER1

# provider_id -> tier -> model name
ModelTierConfig = dict[str, dict[ModelTier, str]]

TIER_LABELS = {
    ModelTier.TIER1: ("cheapest", "Fastest & most affordable"),
    ModelTier.TIER2: ("balanced", "Best cost-to-quality ratio"),
    ModelTier.TIER3: ("premium", "Highest quality outcomes"),
}


def tier_env_var(provider_id: str, tier: ModelTier) -> str:
    """Environment variable holding the model for a provider tier."""
    return f"{provider_id.upper()}_MODEL_TIER_{tier.value[-1]}"


def build_model_tier_config_from_env(
    providers: tuple[str, ...] = SUPPORTED_PROVIDERS,
) -> ModelTierConfig:
    """Read <PROVIDER>_MODEL_TIER_<N> variables into a tier config.

    Unset variables are left out. Whether that matters is decided when a
    provider that needs the tier is constructed.
    """
    config: ModelTierConfig = {}
    for provider_id in providers:
        tiers = {}
        for tier in ModelTier:
            value = os.environ.get(tier_env_var(provider_id, tier), "").strip()
            if value:
                tiers[tier] = value
        config[provider_id] = tiers
    return config


def resolve_model(
    provider_id: str,
    tier: Optional[ModelTier],
    tier_config: ModelTierConfig,
) -> str:
    """Get the model name for a provider tier.

    Raises:
        ConfigurationError: If the tier has no configured model
    """
    tier = ModelTier(tier) if tier else DEFAULT_TIER
    model = tier_config.get(provider_id, {}).get(tier)
    if not model:
        raise ConfigurationError(
            f"{provider_id} model not configured for {tier.value}. "
            f"Set {tier_env_var(provider_id, tier)} in your environment configuration."
        )
    return model


def get_provider_tier_options(tier_config: ModelTierConfig, provider_id: str) -> list[dict]:
    """List tier choices for a provider with display labels."""
    options = []
    for tier in ModelTier:
        model = tier_config.get(provider_id, {}).get(tier)
        if not model:
            continue
        label, description = TIER_LABELS[tier]
        options.append({
            "value": tier.value,
            "label": f"Tier {tier.value[-1]}: {model} ({label})",
            "description": description,
        })
    return options
