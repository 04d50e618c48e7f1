"""Retry coordinator - caller-initiated re-run of a failed phase.

A retry never mutates the prior state. It builds a new success set by
upserting fresh results over the persisted ones (keyed by provider id, last
write wins), then recomputes synthesis, score and the partial flag from that
set.
"""

import logging
from typing import Optional

from analyzic.errors import ConfigurationError
from analyzic.orchestrator.pipeline import (
    AnalysisOrchestrator,
    ProgressCallback,
    compute_final_score,
)
from analyzic.orchestrator.schemas import (
    AnalysisConfig,
    AnalysisPhase,
    AnalysisTemplates,
    PriorAnalysisState,
    PromptContext,
    ProviderError,
    ProviderResult,
    RetryOutcome,
    RetryRequest,
)
from analyzic.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def build_retry_map(request: RetryRequest) -> dict[str, str]:
    """original provider -> provider that runs in its slot.

    Every failed provider retries as itself unless a substitution names
    another provider for it. Substitutions for providers not listed as
    failed are retried too.
    """
    retry_map = {provider_id: provider_id for provider_id in request.failed_providers}
    for substitution in request.substitutions:
        retry_map[substitution.original] = substitution.substitute
    return retry_map


def merge_results(
    prior_results: dict[str, ProviderResult],
    new_results: dict[str, ProviderResult],
    retry_map: dict[str, str],
) -> dict[str, ProviderResult]:
    """Upsert new successes over prior ones. Returns a new dict."""
    merged = dict(prior_results)
    for original, substitute in retry_map.items():
        if substitute not in new_results:
            continue
        if substitute != original:
            merged.pop(original, None)
        merged[substitute] = new_results[substitute]
    return merged


def substitute_providers_used(
    providers_used: list[str],
    new_results: dict[str, ProviderResult],
    retry_map: dict[str, str],
) -> list[str]:
    """Replace each successfully substituted original, keeping order and no repeats."""
    replacements = {
        original: substitute
        for original, substitute in retry_map.items()
        if substitute != original and substitute in new_results
    }
    updated = [replacements.get(provider_id, provider_id) for provider_id in providers_used]
    for original, substitute in replacements.items():
        if original not in providers_used:
            updated.append(substitute)
    return list(dict.fromkeys(updated))


class RetryCoordinator:
    """Re-runs failed providers or synthesis against persisted analysis state."""

    def __init__(self, registry: ProviderRegistry, large_input_var: Optional[str] = None):
        self.registry = registry
        self.orchestrator = AnalysisOrchestrator(registry, large_input_var=large_input_var)

    def retry(
        self,
        request: RetryRequest,
        prior: PriorAnalysisState,
        templates: AnalysisTemplates,
        context: PromptContext,
        images: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RetryOutcome:
        """Re-run the requested phase and recompute downstream state.

        Raises:
            ConfigurationError: Before dispatch, if a provider the retry would
                call is unregistered, or a synthesis-only retry has nothing
                to synthesize
        """
        master_provider = request.new_master_provider or prior.master_provider
        truncate = True if request.truncate_for_synthesis is None else request.truncate_for_synthesis

        if request.phase == AnalysisPhase.SYNTHESIS:
            return self._retry_synthesis(
                request, prior, templates, context, images, master_provider, truncate, on_progress
            )
        return self._retry_initial(
            request, prior, templates, context, images, master_provider, truncate, on_progress
        )

    def _retry_initial(
        self,
        request: RetryRequest,
        prior: PriorAnalysisState,
        templates: AnalysisTemplates,
        context: PromptContext,
        images: Optional[list[str]],
        master_provider: str,
        truncate: bool,
        on_progress: Optional[ProgressCallback],
    ) -> RetryOutcome:
        retry_map = build_retry_map(request)
        if not retry_map:
            raise ConfigurationError("Retry requested with no failed providers or substitutions")

        self._require_registered([*retry_map.values(), master_provider])
        logger.info(f"[retry:{request.analysis_id}] Retrying initial phase: {retry_map}")

        config = AnalysisConfig(
            providers=list(retry_map.values()),
            master_provider=master_provider,
        )
        new_results, errors = self.orchestrator.run_initial_phase(
            config, templates, context, images, on_progress
        )

        merged = merge_results(prior.initial_results, new_results, retry_map)
        providers_used = substitute_providers_used(prior.providers_used, new_results, retry_map)
        retried = [pid for pid in dict.fromkeys(retry_map.values()) if pid in new_results]

        synthesis_result = prior.synthesis_result
        synthesis_retried = False
        if merged:
            synthesis_result, synthesis_error = self.orchestrator.run_synthesis_phase(
                master_provider,
                templates,
                context,
                merged,
                images,
                truncate=truncate,
                on_progress=on_progress,
            )
            synthesis_retried = True
            if synthesis_error is not None:
                errors.append(synthesis_error)

        return self._outcome(
            request, prior, AnalysisPhase.INITIAL, merged, synthesis_result,
            providers_used, master_provider, retried, synthesis_retried, errors,
        )

    def _retry_synthesis(
        self,
        request: RetryRequest,
        prior: PriorAnalysisState,
        templates: AnalysisTemplates,
        context: PromptContext,
        images: Optional[list[str]],
        master_provider: str,
        truncate: bool,
        on_progress: Optional[ProgressCallback],
    ) -> RetryOutcome:
        if not prior.initial_results:
            raise ConfigurationError(
                f"Analysis {request.analysis_id} has no initial results to synthesize"
            )
        self._require_registered([master_provider])
        logger.info(f"[retry:{request.analysis_id}] Retrying synthesis with {master_provider}")

        merged = dict(prior.initial_results)
        synthesis_result, synthesis_error = self.orchestrator.run_synthesis_phase(
            master_provider,
            templates,
            context,
            merged,
            images,
            truncate=truncate,
            on_progress=on_progress,
        )
        errors = [synthesis_error] if synthesis_error is not None else []

        return self._outcome(
            request, prior, AnalysisPhase.SYNTHESIS, merged, synthesis_result,
            list(prior.providers_used), master_provider, [], True, errors,
        )

    def _outcome(
        self,
        request: RetryRequest,
        prior: PriorAnalysisState,
        phase: AnalysisPhase,
        merged: dict[str, ProviderResult],
        synthesis_result: Optional[ProviderResult],
        providers_used: list[str],
        master_provider: str,
        retried: list[str],
        synthesis_retried: bool,
        errors: list[ProviderError],
    ) -> RetryOutcome:
        missing = [pid for pid in providers_used if pid not in merged]
        outcome = RetryOutcome(
            analysis_id=request.analysis_id,
            phase=phase,
            initial_results=merged,
            synthesis_result=synthesis_result,
            providers_used=providers_used,
            master_provider=master_provider,
            retried_providers=retried,
            synthesis_retried=synthesis_retried,
            synthesis_discarded=synthesis_retried and prior.synthesis_result is not None,
            errors=errors,
            final_score=compute_final_score(synthesis_result, merged),
            has_partial_results=bool(errors or missing or synthesis_result is None),
        )
        logger.info(
            f"[retry:{request.analysis_id}] Done: {len(merged)} results, "
            f"score={outcome.final_score}, errors={len(errors)}"
        )
        return outcome

    def _require_registered(self, provider_ids: list[str]) -> None:
        missing = self.registry.missing(provider_ids)
        if missing:
            raise ConfigurationError(
                f"Providers not configured: {', '.join(missing)}. "
                f"Available: {', '.join(self.registry) or 'none'}"
            )
