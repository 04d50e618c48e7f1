"""Schemas for the analysis pipeline and retry protocol.

Inbound request shapes (config, templates, context, retry request) are
pydantic models. Everything produced during a run (provider results,
errors, pipeline and retry outcomes) is a frozen dataclass: once a phase
has produced it, nothing downstream mutates it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from analyzic.domains.schemas import BaseAnalysisResult
from analyzic.llm.tiers import ModelTier


class AnalysisPhase(str, Enum):
    """Pipeline phases."""
    INITIAL = "initial"
    RETHINK = "rethink"  # reserved, not run by the default pipeline
    SYNTHESIS = "synthesis"


class PipelineState(str, Enum):
    """Orchestrator states, in the order a run moves through them."""
    INIT = "init"
    PHASE1_RUNNING = "phase1_running"
    PHASE1_ALL_FAILED = "phase1_all_failed"
    PHASE1_PARTIAL_OR_FULL = "phase1_partial_or_full"
    SYNTHESIS_RUNNING = "synthesis_running"
    COMPLETED = "completed"
    PARTIAL = "partial"


# --- Inbound ---


class PhaseTemplate(BaseModel):
    """System prompt plus a {{placeholder}} user prompt template."""

    system_prompt: str
    user_prompt_template: str


class AnalysisTemplates(BaseModel):
    """Prompt templates for each pipeline phase."""

    initial: PhaseTemplate
    rethink: PhaseTemplate
    synthesis: PhaseTemplate


class PromptContext(BaseModel):
    """Per-request prompt inputs."""

    system_suffix: Optional[str] = Field(
        default=None,
        description="Appended to the initial-phase system prompt",
    )
    user_vars: dict[str, Any] = Field(
        default_factory=dict,
        description="Values for {{name}} placeholders in user prompt templates",
    )


class AnalysisConfig(BaseModel):
    """Which providers analyze, and which one synthesizes."""

    providers: list[str] = Field(min_length=1)
    master_provider: str
    model_tiers: dict[str, ModelTier] = Field(
        default_factory=dict,
        description="Per-provider tier used when building the registry",
    )
    truncate_for_synthesis: bool = Field(
        default=False,
        description="Cut the large input variable to a fixed budget in the synthesis prompt",
    )

    @field_validator("providers")
    @classmethod
    def _dedupe_providers(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class ProviderSubstitution(BaseModel):
    """Retry a failed provider's slot with a different provider."""

    original: str
    substitute: str


class RetryRequest(BaseModel):
    """Caller-initiated re-run of a failed phase."""

    analysis_id: str
    failed_providers: list[str] = Field(default_factory=list)
    phase: AnalysisPhase = AnalysisPhase.INITIAL
    substitutions: list[ProviderSubstitution] = Field(default_factory=list)
    new_master_provider: Optional[str] = None
    truncate_for_synthesis: Optional[bool] = Field(
        default=None,
        description="Defaults to truncating when unset",
    )

    @field_validator("phase")
    @classmethod
    def _retryable_phase(cls, value: AnalysisPhase) -> AnalysisPhase:
        if value == AnalysisPhase.RETHINK:
            raise ValueError("Only the initial and synthesis phases can be retried")
        return value


# --- Produced during a run ---


@dataclass(frozen=True)
class ProviderResult:
    """A validated result from one provider call."""

    provider_id: str
    result: BaseAnalysisResult
    tokens_used: int
    latency_ms: int

    @property
    def score(self) -> float:
        return self.result.overall_score


@dataclass(frozen=True)
class ProviderError:
    """A failed provider call, recorded instead of raised."""

    provider_id: str
    phase: AnalysisPhase
    error: str


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one pipeline run."""

    initial_results: dict[str, ProviderResult]
    rethink_results: dict[str, ProviderResult]
    synthesis_result: Optional[ProviderResult]
    final_score: Union[int, float]
    errors: list[ProviderError]
    has_partial_results: bool

    @property
    def state(self) -> PipelineState:
        return PipelineState.PARTIAL if self.has_partial_results else PipelineState.COMPLETED


class ResponseRecord(BaseModel):
    """One completed provider call, shaped for the persistence layer."""

    analysis_id: str
    provider: str
    phase: AnalysisPhase
    result: dict[str, Any]
    score: float
    tokens_used: int = 0
    latency_ms: int = 0

    @classmethod
    def from_result(
        cls, analysis_id: str, phase: AnalysisPhase, provider_result: ProviderResult
    ) -> "ResponseRecord":
        return cls(
            analysis_id=analysis_id,
            provider=provider_result.provider_id,
            phase=phase,
            result=provider_result.result.model_dump(by_alias=True),
            score=provider_result.score,
            tokens_used=provider_result.tokens_used,
            latency_ms=provider_result.latency_ms,
        )


@dataclass(frozen=True)
class PriorAnalysisState:
    """Previously persisted state a retry recomputes from."""

    analysis_id: str
    providers_used: list[str]
    master_provider: str
    initial_results: dict[str, ProviderResult] = field(default_factory=dict)
    synthesis_result: Optional[ProviderResult] = None

    @classmethod
    def from_records(
        cls,
        analysis_id: str,
        providers_used: list[str],
        master_provider: str,
        records: list[ResponseRecord],
        result_schema: type[BaseAnalysisResult] = BaseAnalysisResult,
    ) -> "PriorAnalysisState":
        """Rebuild state from stored records (later records win per provider)."""
        initial_results: dict[str, ProviderResult] = {}
        synthesis_result = None
        for record in records:
            provider_result = ProviderResult(
                provider_id=record.provider,
                result=result_schema.model_validate(record.result),
                tokens_used=record.tokens_used,
                latency_ms=record.latency_ms,
            )
            if record.phase == AnalysisPhase.INITIAL:
                initial_results[record.provider] = provider_result
            elif record.phase == AnalysisPhase.SYNTHESIS:
                synthesis_result = provider_result
        return cls(
            analysis_id=analysis_id,
            providers_used=list(providers_used),
            master_provider=master_provider,
            initial_results=initial_results,
            synthesis_result=synthesis_result,
        )


@dataclass(frozen=True)
class RetryOutcome:
    """Recomputed analysis state after a retry."""

    analysis_id: str
    phase: AnalysisPhase
    initial_results: dict[str, ProviderResult]
    synthesis_result: Optional[ProviderResult]
    providers_used: list[str]
    master_provider: str
    retried_providers: list[str]
    synthesis_retried: bool
    synthesis_discarded: bool
    errors: list[ProviderError]
    final_score: Union[int, float]
    has_partial_results: bool

    def new_records(self) -> list[ResponseRecord]:
        """Records produced by this retry (retried successes + new synthesis)."""
        records = [
            ResponseRecord.from_result(
                self.analysis_id, AnalysisPhase.INITIAL, self.initial_results[provider_id]
            )
            for provider_id in self.retried_providers
        ]
        if self.synthesis_result is not None and self.synthesis_retried:
            records.append(
                ResponseRecord.from_result(
                    self.analysis_id, AnalysisPhase.SYNTHESIS, self.synthesis_result
                )
            )
        return records
