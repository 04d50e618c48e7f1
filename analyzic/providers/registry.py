"""Provider registry - immutable map of provider id to configured provider.

Built once per request from explicit credentials and tier selections, then
passed by reference into the orchestrator and retry coordinator. It is
read-only after construction, so concurrent phase-1 workers share it
without locking.
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from analyzic.domains.schemas import BaseAnalysisResult
from analyzic.errors import ConfigurationError
from analyzic.llm.factory import get_backend
from analyzic.llm.tiers import DEFAULT_TIER, ModelTier, ModelTierConfig
from analyzic.providers.base import AnalysisProvider
from analyzic.providers.call_log import ApiCallLogger

logger = logging.getLogger(__name__)


class ProviderRegistry(Mapping):
    """Read-only provider lookup."""

    def __init__(self, providers: Iterable[AnalysisProvider] = ()):
        table = {}
        for provider in providers:
            if provider.provider_id in table:
                raise ConfigurationError(f"Duplicate provider id: {provider.provider_id}")
            table[provider.provider_id] = provider
        self._providers = MappingProxyType(table)

    def __getitem__(self, provider_id: str) -> AnalysisProvider:
        return self._providers[provider_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def get_provider(self, provider_id: str) -> AnalysisProvider:
        """Get a provider, raising if it is not configured."""
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(f"Provider {provider_id} not configured (missing API key?)")
        return provider

    def missing(self, provider_ids: Iterable[str]) -> list[str]:
        """Ids from provider_ids that are not registered, in order, without repeats."""
        return [p for p in dict.fromkeys(provider_ids) if p not in self._providers]


def build_provider_registry(
    api_keys: dict[str, str],
    tier_config: ModelTierConfig,
    model_tiers: Optional[dict[str, ModelTier]] = None,
    result_schema: type[BaseAnalysisResult] = BaseAnalysisResult,
    only: Optional[Iterable[str]] = None,
) -> ProviderRegistry:
    """Construct one provider per configured API key.

    Args:
        api_keys: provider id -> API key (providers without a key are skipped)
        tier_config: provider id -> tier -> model name
        model_tiers: provider id -> requested tier (default tier1)
        result_schema: Domain schema every provider validates against
        only: Restrict construction to these provider ids

    Raises:
        ConfigurationError: If a provider's requested tier has no model, or an
            id has no known backend. Raised before the registry exists.
    """
    model_tiers = model_tiers or {}
    wanted = set(only) if only is not None else None

    providers = []
    for provider_id, api_key in api_keys.items():
        if not api_key or (wanted is not None and provider_id not in wanted):
            continue
        tier = model_tiers.get(provider_id)
        backend = get_backend(provider_id, api_key, tier, tier_config)
        providers.append(
            AnalysisProvider(
                backend,
                result_schema=result_schema,
                call_logger=ApiCallLogger.from_env(provider_id),
            )
        )
        logger.info(
            f"Registered provider {provider_id} "
            f"(tier={ModelTier(tier or DEFAULT_TIER).value}, "
            f"model={backend.model_id})"
        )

    logger.info(f"Provider registry built: {list(p.provider_id for p in providers)}")
    return ProviderRegistry(providers)
