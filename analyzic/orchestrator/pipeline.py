"""Analysis pipeline controller.

Runs one analysis end to end:
1. Validates every requested provider (and the master) is registered
2. Phase 1: every provider analyzes independently, in parallel
3. Phase 2 (rethink) is reserved and skipped
4. Phase 3: the master provider synthesizes all phase-1 results
5. Computes the final score and the partial-results flag

Provider failures never abort a phase. Each becomes a ProviderError and the
phase continues with whatever succeeded. The only exception raised after
dispatch is AllProvidersFailedError, when phase 1 produces nothing.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional, Union

from analyzic.errors import AllProvidersFailedError, ConfigurationError
from analyzic.orchestrator.prompts import build_prompt, truncate_variable
from analyzic.orchestrator.schemas import (
    AnalysisConfig,
    AnalysisPhase,
    AnalysisTemplates,
    PipelineResult,
    PipelineState,
    PromptContext,
    ProviderError,
    ProviderResult,
    ResponseRecord,
)
from analyzic.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

DEFAULT_LARGE_INPUT_VAR = "code"


def compute_final_score(
    synthesis_result: Optional[ProviderResult],
    initial_results: dict[str, ProviderResult],
) -> Union[int, float]:
    """Synthesis score if present, else the rounded mean of phase-1 scores, else 0.

    Rounding is half-up (2.5 -> 3), not Python's banker's rounding.
    """
    if synthesis_result is not None:
        return synthesis_result.score
    if not initial_results:
        return 0
    mean = sum(r.score for r in initial_results.values()) / len(initial_results)
    return math.floor(mean + 0.5)


def format_for_storage(analysis_id: str, result: PipelineResult) -> list[ResponseRecord]:
    """One record per phase-1 success, plus the synthesis record if any."""
    records = [
        ResponseRecord.from_result(analysis_id, AnalysisPhase.INITIAL, provider_result)
        for provider_result in result.initial_results.values()
    ]
    records.extend(
        ResponseRecord.from_result(analysis_id, AnalysisPhase.RETHINK, provider_result)
        for provider_result in result.rethink_results.values()
    )
    if result.synthesis_result is not None:
        records.append(
            ResponseRecord.from_result(
                analysis_id, AnalysisPhase.SYNTHESIS, result.synthesis_result
            )
        )
    return records


def describe_errors(errors: Iterable[ProviderError]) -> str:
    """'provider: reason' for each error, joined."""
    return "; ".join(f"{e.provider_id}: {e.error}" for e in errors)


class AnalysisOrchestrator:
    """Runs the multi-provider pipeline against a provider registry."""

    def __init__(self, registry: ProviderRegistry, large_input_var: Optional[str] = None):
        self.registry = registry
        self.large_input_var = large_input_var or DEFAULT_LARGE_INPUT_VAR

    # --- Validation ---

    def validate_providers(self, config: AnalysisConfig) -> None:
        """Raise ConfigurationError naming every requested id not in the registry."""
        missing = self.registry.missing([*config.providers, config.master_provider])
        if missing:
            raise ConfigurationError(
                f"Providers not configured: {', '.join(missing)}. "
                f"Available: {', '.join(self.registry) or 'none'}"
            )

    # --- Phase 1 ---

    def run_initial_phase(
        self,
        config: AnalysisConfig,
        templates: AnalysisTemplates,
        context: PromptContext,
        images: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[dict[str, ProviderResult], list[ProviderError]]:
        """Every provider analyzes independently. Failures are isolated."""
        system_prompt = templates.initial.system_prompt
        if context.system_suffix:
            system_prompt += context.system_suffix
        user_prompt = build_prompt(templates.initial.user_prompt_template, context.user_vars)

        def run_one(provider_id: str) -> ProviderResult:
            if on_progress:
                on_progress(f"{provider_id} analyzing...")
            return self.registry.get_provider(provider_id).analyze(
                system_prompt, user_prompt, images
            )

        return self._fan_out(
            config.providers, run_one, AnalysisPhase.INITIAL, on_progress
        )

    # --- Phase 2 (reserved) ---

    def run_rethink_phase(
        self,
        templates: AnalysisTemplates,
        context: PromptContext,
        initial_results: dict[str, ProviderResult],
        images: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[dict[str, ProviderResult], list[ProviderError]]:
        """Each provider revises its result after seeing the others'.

        Not called by run_pipeline.
        """
        system_prompt = templates.rethink.system_prompt
        user_prompt = build_prompt(templates.rethink.user_prompt_template, context.user_vars)

        def run_one(provider_id: str) -> ProviderResult:
            if on_progress:
                on_progress(f"{provider_id} reconsidering...")
            others = [r for pid, r in initial_results.items() if pid != provider_id]
            return self.registry.get_provider(provider_id).rethink(
                system_prompt, user_prompt, initial_results[provider_id], others, images
            )

        return self._fan_out(
            list(initial_results), run_one, AnalysisPhase.RETHINK, on_progress
        )

    # --- Phase 3 ---

    def run_synthesis_phase(
        self,
        master_provider: str,
        templates: AnalysisTemplates,
        context: PromptContext,
        results: dict[str, ProviderResult],
        images: Optional[list[str]] = None,
        truncate: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[Optional[ProviderResult], Optional[ProviderError]]:
        """Master provider consolidates every result. Never raises for provider failures."""
        if not results:
            logger.warning("[synthesis] No results to synthesize")
            return None, ProviderError(
                provider_id=master_provider,
                phase=AnalysisPhase.SYNTHESIS,
                error="No results to synthesize",
            )

        variables = context.user_vars
        if truncate:
            variables = truncate_variable(variables, self.large_input_var)
        user_prompt = build_prompt(templates.synthesis.user_prompt_template, variables)

        if on_progress:
            on_progress(f"{master_provider} synthesizing {len(results)} analyses...")
        logger.info(f"[synthesis] {master_provider} synthesizing {list(results)}")

        try:
            provider = self.registry.get_provider(master_provider)
            result = provider.synthesize(
                templates.synthesis.system_prompt,
                user_prompt,
                list(results.values()),
                images,
            )
        except Exception as e:
            logger.error(f"[synthesis] {master_provider} failed: {e}")
            return None, ProviderError(
                provider_id=master_provider,
                phase=AnalysisPhase.SYNTHESIS,
                error=str(e),
            )

        if on_progress:
            on_progress(f"{master_provider} synthesis complete")
        return result, None

    # --- Full run ---

    def run_pipeline(
        self,
        config: AnalysisConfig,
        templates: AnalysisTemplates,
        context: PromptContext,
        images: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """Validate, analyze in parallel, synthesize, score.

        Raises:
            ConfigurationError: Before dispatch, if any provider is unregistered
            AllProvidersFailedError: If no provider succeeds in phase 1
        """
        start_time = time.time()
        self.validate_providers(config)
        self._log_state(PipelineState.INIT, f"providers={config.providers}, master={config.master_provider}")

        self._log_state(PipelineState.PHASE1_RUNNING)
        initial_results, errors = self.run_initial_phase(
            config, templates, context, images, on_progress
        )

        if not initial_results:
            self._log_state(PipelineState.PHASE1_ALL_FAILED)
            raise AllProvidersFailedError(
                f"All providers failed in initial analysis: {describe_errors(errors)}",
                errors=errors,
            )
        self._log_state(
            PipelineState.PHASE1_PARTIAL_OR_FULL,
            f"{len(initial_results)}/{len(config.providers)} succeeded",
        )

        self._log_state(PipelineState.SYNTHESIS_RUNNING)
        synthesis_result, synthesis_error = self.run_synthesis_phase(
            config.master_provider,
            templates,
            context,
            initial_results,
            images,
            truncate=config.truncate_for_synthesis,
            on_progress=on_progress,
        )
        if synthesis_error is not None:
            errors.append(synthesis_error)

        result = PipelineResult(
            initial_results=initial_results,
            rethink_results={},
            synthesis_result=synthesis_result,
            final_score=compute_final_score(synthesis_result, initial_results),
            errors=errors,
            has_partial_results=bool(errors),
        )

        duration_ms = int((time.time() - start_time) * 1000)
        self._log_state(
            result.state,
            f"score={result.final_score}, errors={len(errors)}, {duration_ms}ms",
        )
        return result

    # --- Internals ---

    def _fan_out(
        self,
        provider_ids: list[str],
        run_one: Callable[[str], ProviderResult],
        phase: AnalysisPhase,
        on_progress: Optional[ProgressCallback],
    ) -> tuple[dict[str, ProviderResult], list[ProviderError]]:
        """Run one call per provider concurrently and wait for all to settle."""
        settled: dict[str, ProviderResult] = {}
        failed: dict[str, ProviderError] = {}
        if not provider_ids:
            return {}, []

        with ThreadPoolExecutor(max_workers=len(provider_ids)) as executor:
            futures = {
                executor.submit(run_one, provider_id): provider_id
                for provider_id in provider_ids
            }

            for future in as_completed(futures):
                provider_id = futures[future]
                try:
                    settled[provider_id] = future.result()
                    if on_progress:
                        on_progress(f"{provider_id} complete")
                except Exception as e:
                    logger.error(f"[{phase.value}] {provider_id} failed: {e}")
                    failed[provider_id] = ProviderError(
                        provider_id=provider_id, phase=phase, error=str(e)
                    )
                    if on_progress:
                        on_progress(f"{provider_id} failed")

        # Completion order is nondeterministic; report in request order
        results = {pid: settled[pid] for pid in provider_ids if pid in settled}
        errors = [failed[pid] for pid in provider_ids if pid in failed]
        return results, errors

    @staticmethod
    def _log_state(state: PipelineState, detail: str = "") -> None:
        logger.info(f"[pipeline] {state.value}" + (f": {detail}" if detail else ""))
