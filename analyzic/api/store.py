"""In-memory analysis store.

Holds what a later retry needs: the request inputs, the providers used and
the response records. Per process only; a database-backed store would keep
the same interface.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from analyzic.llm.tiers import ModelTier
from analyzic.orchestrator.schemas import (
    AnalysisPhase,
    PriorAnalysisState,
    ProviderError,
    ResponseRecord,
)

logger = logging.getLogger(__name__)


class ErrorEntry(BaseModel):
    """A provider failure as reported to callers."""

    provider: str
    phase: AnalysisPhase
    error: str

    @classmethod
    def from_error(cls, error: ProviderError) -> "ErrorEntry":
        return cls(provider=error.provider_id, phase=error.phase, error=error.error)


class StoredAnalysis(BaseModel):
    """One analysis and everything needed to retry it."""

    analysis_id: str
    domain: str
    status: str
    providers_used: list[str]
    master_provider: str
    model_tiers: dict[str, ModelTier] = Field(default_factory=dict)
    user_vars: dict[str, Any] = Field(default_factory=dict)
    system_suffix: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    records: list[ResponseRecord] = Field(default_factory=list)
    errors: list[ErrorEntry] = Field(default_factory=list)
    final_score: float = 0
    has_partial_results: bool = False
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    updated_at: Optional[str] = None

    def prior_state(self, result_schema) -> PriorAnalysisState:
        return PriorAnalysisState.from_records(
            self.analysis_id,
            self.providers_used,
            self.master_provider,
            self.records,
            result_schema=result_schema,
        )


class InMemoryResponseStore:
    """Thread-safe analysis_id -> StoredAnalysis map."""

    def __init__(self):
        self._analyses: dict[str, StoredAnalysis] = {}
        self._lock = threading.Lock()

    def save(self, analysis: StoredAnalysis) -> None:
        with self._lock:
            self._analyses[analysis.analysis_id] = analysis
        logger.info(
            f"Stored analysis {analysis.analysis_id}: "
            f"{len(analysis.records)} records, status={analysis.status}"
        )

    def get(self, analysis_id: str) -> Optional[StoredAnalysis]:
        with self._lock:
            analysis = self._analyses.get(analysis_id)
        return analysis.model_copy(deep=True) if analysis else None

    def count(self) -> int:
        with self._lock:
            return len(self._analyses)

    def clear(self) -> None:
        with self._lock:
            self._analyses.clear()


# Global store instance
_store: Optional[InMemoryResponseStore] = None


def get_response_store() -> InMemoryResponseStore:
    """Get the global response store instance."""
    global _store
    if _store is None:
        _store = InMemoryResponseStore()
    return _store
