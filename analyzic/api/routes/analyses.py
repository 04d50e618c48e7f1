"""Analysis API routes.

Endpoints:
    POST /v1/analyses                        Run the pipeline for a domain
    POST /v1/analyses/{analysis_id}/retry    Re-run failed providers or synthesis
    GET  /v1/analyses/{analysis_id}          Stored analysis
    GET  /v1/domains                         Available analysis domains
    GET  /v1/health                          Health check
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, ValidationError

from analyzic.api.store import ErrorEntry, StoredAnalysis, get_response_store
from analyzic.config import load_api_keys
from analyzic.domains.context import ContractContext, build_contract_context_prompt
from analyzic.domains.registry import DomainDefinition, get_domain_registry
from analyzic.errors import AllProvidersFailedError, ConfigurationError
from analyzic.llm.tiers import ModelTier, build_model_tier_config_from_env
from analyzic.orchestrator.pipeline import AnalysisOrchestrator, format_for_storage
from analyzic.orchestrator.retry import RetryCoordinator, build_retry_map
from analyzic.orchestrator.schemas import (
    AnalysisConfig,
    AnalysisPhase,
    PromptContext,
    ProviderSubstitution,
    ResponseRecord,
    RetryOutcome,
    RetryRequest,
)
from analyzic.providers.registry import ProviderRegistry, build_provider_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analyses"])


# --- Request/response models ---


class AnalyzeRequest(BaseModel):
    """Start an analysis."""

    domain: str = Field(description="Domain key, e.g. 'contract_analysis'")
    providers: list[str] = Field(min_length=1)
    master_provider: str
    model_tiers: dict[str, ModelTier] = Field(default_factory=dict)
    truncate_for_synthesis: bool = False
    user_vars: dict[str, Any] = Field(default_factory=dict)
    system_suffix: Optional[str] = None
    contract_context: Optional[ContractContext] = None
    images: list[str] = Field(
        default_factory=list,
        description="Base64 data URLs shared by every provider call",
    )


class RetryBody(BaseModel):
    """Retry parameters; the analysis id comes from the path."""

    failed_providers: list[str] = Field(default_factory=list)
    phase: AnalysisPhase = AnalysisPhase.INITIAL
    substitutions: list[ProviderSubstitution] = Field(default_factory=list)
    new_master_provider: Optional[str] = None
    model_tiers: dict[str, ModelTier] = Field(default_factory=dict)
    truncate_for_synthesis: Optional[bool] = None


class AnalysisResponse(BaseModel):
    """An analysis as returned to callers."""

    analysis_id: str
    domain: str
    status: str
    providers_used: list[str]
    master_provider: str
    final_score: float
    has_partial_results: bool
    results: list[ResponseRecord]
    errors: list[ErrorEntry]

    @classmethod
    def from_stored(cls, analysis: StoredAnalysis) -> "AnalysisResponse":
        return cls(
            analysis_id=analysis.analysis_id,
            domain=analysis.domain,
            status=analysis.status,
            providers_used=analysis.providers_used,
            master_provider=analysis.master_provider,
            final_score=analysis.final_score,
            has_partial_results=analysis.has_partial_results,
            results=analysis.records,
            errors=analysis.errors,
        )


# --- Helpers ---


def _get_domain(key: str) -> DomainDefinition:
    domain = get_domain_registry().get(key)
    if domain is None:
        raise HTTPException(
            status_code=404,
            detail=f"Domain not found: {key}. Available: {get_domain_registry().list_keys()}",
        )
    return domain


def _build_registry(
    domain: DomainDefinition,
    provider_ids: list[str],
    model_tiers: dict[str, ModelTier],
) -> ProviderRegistry:
    """Providers for this request, built from environment credentials."""
    return build_provider_registry(
        load_api_keys(),
        build_model_tier_config_from_env(),
        model_tiers=model_tiers,
        result_schema=domain.result_model,
        only=provider_ids,
    )


def _prompt_context(
    user_vars: dict[str, Any],
    system_suffix: Optional[str],
    images: list[str],
) -> PromptContext:
    variables = dict(user_vars)
    if images:
        variables.setdefault("imageCount", len(images))
    return PromptContext(system_suffix=system_suffix, user_vars=variables)


def _errors_after_retry(
    prior_errors: list[ErrorEntry],
    request: RetryRequest,
    outcome: RetryOutcome,
) -> list[ErrorEntry]:
    """Prior errors the retry did not revisit, followed by the retry's own errors."""
    revisited = set()
    if request.phase == AnalysisPhase.INITIAL:
        for original, substitute in build_retry_map(request).items():
            revisited.update((original, substitute))

    kept = [
        e for e in prior_errors
        if not (e.phase == AnalysisPhase.SYNTHESIS and outcome.synthesis_retried)
        and not (e.phase == AnalysisPhase.INITIAL and e.provider in revisited)
    ]
    return kept + [ErrorEntry.from_error(e) for e in outcome.errors]


def _status(has_partial_results: bool) -> str:
    return "partial" if has_partial_results else "completed"


# --- Endpoints ---


@router.post("/analyses", response_model=AnalysisResponse)
def create_analysis(request: AnalyzeRequest):
    """Run every provider in parallel, then synthesize with the master.

    Responds 400 when a provider or tier is not configured, and 502 when
    every provider fails the initial phase.
    """
    domain = _get_domain(request.domain)
    analysis_id = str(uuid.uuid4())

    system_suffix = (request.system_suffix or "") + build_contract_context_prompt(
        request.contract_context
    )
    context = _prompt_context(request.user_vars, system_suffix or None, request.images)

    try:
        config = AnalysisConfig(
            providers=request.providers,
            master_provider=request.master_provider,
            model_tiers=request.model_tiers,
            truncate_for_synthesis=request.truncate_for_synthesis,
        )
        registry = _build_registry(
            domain, [*config.providers, config.master_provider], config.model_tiers
        )
        orchestrator = AnalysisOrchestrator(registry, large_input_var=domain.large_input_var)
        result = orchestrator.run_pipeline(
            config,
            domain.templates,
            context,
            images=request.images or None,
            on_progress=lambda message: logger.info(f"[{analysis_id}] {message}"),
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AllProvidersFailedError as e:
        logger.error(f"[{analysis_id}] {e}")
        raise HTTPException(status_code=502, detail=str(e))

    analysis = StoredAnalysis(
        analysis_id=analysis_id,
        domain=domain.key,
        status=_status(result.has_partial_results),
        providers_used=config.providers,
        master_provider=config.master_provider,
        model_tiers=config.model_tiers,
        user_vars=request.user_vars,
        system_suffix=system_suffix or None,
        images=request.images,
        records=format_for_storage(analysis_id, result),
        errors=[ErrorEntry.from_error(e) for e in result.errors],
        final_score=result.final_score,
        has_partial_results=result.has_partial_results,
    )
    get_response_store().save(analysis)
    return AnalysisResponse.from_stored(analysis)


@router.post("/analyses/{analysis_id}/retry", response_model=AnalysisResponse)
def retry_analysis(analysis_id: str, body: RetryBody):
    """Re-run failed providers (optionally substituted) or only synthesis.

    Any previous synthesis is discarded and recomputed from the merged
    initial results.
    """
    store = get_response_store()
    analysis = store.get(analysis_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Analysis not found: {analysis_id}")

    domain = _get_domain(analysis.domain)
    context = _prompt_context(analysis.user_vars, analysis.system_suffix, analysis.images)

    try:
        request = RetryRequest(
            analysis_id=analysis_id,
            failed_providers=body.failed_providers,
            phase=body.phase,
            substitutions=body.substitutions,
            new_master_provider=body.new_master_provider,
            truncate_for_synthesis=body.truncate_for_synthesis,
        )
        prior = analysis.prior_state(domain.result_model)
        needed = [request.new_master_provider or analysis.master_provider]
        if request.phase == AnalysisPhase.INITIAL:
            needed.extend(build_retry_map(request).values())
        registry = _build_registry(
            domain, needed, {**analysis.model_tiers, **body.model_tiers}
        )
        outcome = RetryCoordinator(registry, large_input_var=domain.large_input_var).retry(
            request,
            prior,
            domain.templates,
            context,
            images=analysis.images or None,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    records = [
        ResponseRecord.from_result(analysis_id, AnalysisPhase.INITIAL, provider_result)
        for provider_result in outcome.initial_results.values()
    ]
    if outcome.synthesis_result is not None:
        records.append(
            ResponseRecord.from_result(analysis_id, AnalysisPhase.SYNTHESIS, outcome.synthesis_result)
        )
    logger.info(
        f"[{analysis_id}] Retry produced {len(outcome.new_records())} new records "
        f"(synthesis discarded: {outcome.synthesis_discarded})"
    )

    updated = analysis.model_copy(update={
        "status": _status(outcome.has_partial_results),
        "providers_used": outcome.providers_used,
        "master_provider": outcome.master_provider,
        "records": records,
        "errors": _errors_after_retry(analysis.errors, request, outcome),
        "final_score": outcome.final_score,
        "has_partial_results": outcome.has_partial_results,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    })
    store.save(updated)
    return AnalysisResponse.from_stored(updated)


@router.get("/analyses/{analysis_id}", response_model=AnalysisResponse)
def get_analysis(analysis_id: str):
    """Get a stored analysis."""
    analysis = get_response_store().get(analysis_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Analysis not found: {analysis_id}")
    return AnalysisResponse.from_stored(analysis)


@router.get("/domains")
def list_domains():
    """List analysis domains."""
    registry = get_domain_registry()
    return [
        {"key": d.key, "name": d.name, "description": d.description}
        for d in (registry.get(key) for key in registry.list_keys())
    ]


@router.get("/health")
def health():
    """Health check."""
    return {
        "status": "healthy",
        "domains": get_domain_registry().count(),
        "configured_providers": sorted(load_api_keys()),
        "stored_analyses": get_response_store().count(),
    }
