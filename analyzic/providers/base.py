"""Capability provider: one AI backend behind analyze / rethink / synthesize.

Every public method funnels through _execute(), which:
1. Makes one backend call and times it
2. Logs the raw request/response (best-effort, before parsing)
3. Extracts JSON from the response text, repairing truncation if needed
4. Tags the result with this provider's own id (whatever the backend claimed)
5. Validates it against the domain result schema

A failure at any step raises a ProviderCallError subclass. The orchestrator
catches those at the phase boundary; nothing here decides what a failure
means for the pipeline.
"""

import logging
import time
from typing import Iterable, Optional

from pydantic import ValidationError

from analyzic.domains.schemas import BaseAnalysisResult
from analyzic.errors import ProviderCallError, SchemaValidationError, TransportError
from analyzic.llm.backends import ModelBackend
from analyzic.llm.parsing import parse_llm_json_response
from analyzic.orchestrator.prompts import build_rethink_prompt, build_synthesis_prompt
from analyzic.orchestrator.schemas import ProviderResult
from analyzic.providers.call_log import ApiCallLogger

logger = logging.getLogger(__name__)

MAX_VALIDATION_ERRORS_REPORTED = 5


class AnalysisProvider:
    """A configured backend plus the result schema its answers must satisfy."""

    def __init__(
        self,
        backend: ModelBackend,
        result_schema: type[BaseAnalysisResult] = BaseAnalysisResult,
        call_logger: Optional[ApiCallLogger] = None,
        max_tokens: Optional[int] = None,
    ):
        self._backend = backend
        self._result_schema = result_schema
        self._call_logger = call_logger
        self._max_tokens = max_tokens

    @property
    def provider_id(self) -> str:
        return self._backend.provider_id

    @property
    def model_id(self) -> str:
        return self._backend.model_id

    @property
    def result_schema(self) -> type[BaseAnalysisResult]:
        return self._result_schema

    def analyze(
        self,
        system_prompt: str,
        user_prompt: str,
        images: Optional[list[str]] = None,
    ) -> ProviderResult:
        """Independent analysis of the content."""
        return self._execute("analyze", system_prompt, user_prompt, images)

    def rethink(
        self,
        system_prompt: str,
        user_prompt: str,
        previous_result: ProviderResult,
        other_results: Iterable[ProviderResult],
        images: Optional[list[str]] = None,
    ) -> ProviderResult:
        """Revise a previous result after seeing the other providers' results."""
        prompt = build_rethink_prompt(user_prompt, previous_result, other_results)
        return self._execute("rethink", system_prompt, prompt, images)

    def synthesize(
        self,
        system_prompt: str,
        user_prompt: str,
        all_results: Iterable[ProviderResult],
        images: Optional[list[str]] = None,
    ) -> ProviderResult:
        """Consolidate every provider's result into one."""
        prompt = build_synthesis_prompt(user_prompt, all_results)
        return self._execute("synthesize", system_prompt, prompt, images)

    def _execute(
        self,
        method: str,
        system_prompt: str,
        user_prompt: str,
        images: Optional[list[str]],
    ) -> ProviderResult:
        label = f"{self.provider_id}:{method}"
        start_time = time.time()

        try:
            call = self._backend.execute_sync(
                system_prompt,
                user_prompt,
                images=images or None,
                max_tokens=self._max_tokens,
                label=label,
            )
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[{label}] Transport failed after {latency_ms}ms: {e}")
            self._log_call(method, system_prompt, user_prompt, images, "", 0, latency_ms, str(e))
            raise TransportError(self.provider_id, f"{self.provider_id} API call failed: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)
        tokens_used = call.total_tokens

        # Logged before parsing so the raw response survives a parse failure
        self._log_call(method, system_prompt, user_prompt, images, call.content, tokens_used, latency_ms)

        try:
            result = self._validate(call.content)
        except ProviderCallError as e:
            self._log_call(
                method, system_prompt, user_prompt, images,
                call.content, tokens_used, latency_ms, str(e),
            )
            raise

        logger.info(
            f"[{label}] Valid result: score={result.overall_score}, "
            f"{tokens_used} tokens, {latency_ms}ms"
        )
        return ProviderResult(
            provider_id=self.provider_id,
            result=result,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )

    def _validate(self, content: str) -> BaseAnalysisResult:
        """Turn untrusted response text into a schema-valid result."""
        parsed = parse_llm_json_response(content, self.provider_id)
        if not isinstance(parsed, dict):
            raise SchemaValidationError(
                self.provider_id,
                f"{self.provider_id} response is not a JSON object "
                f"(got {type(parsed).__name__})",
            )

        try:
            return self._result_schema.model_validate({**parsed, "provider": self.provider_id})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()[:MAX_VALIDATION_ERRORS_REPORTED]
            )
            raise SchemaValidationError(
                self.provider_id,
                f"{self.provider_id} response failed schema validation "
                f"({e.error_count()} errors): {problems}",
            ) from e

    def _log_call(
        self,
        method: str,
        system_prompt: str,
        user_prompt: str,
        images: Optional[list[str]],
        content: str,
        tokens_used: int,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        if self._call_logger is None:
            return
        try:
            self._call_logger.log_call(
                method,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                images=images,
                content=content,
                tokens_used=tokens_used,
                latency_ms=latency_ms,
                error=error,
            )
        except Exception as e:
            logger.error(f"[{self.provider_id}] Logging error in {method}: {e}")
