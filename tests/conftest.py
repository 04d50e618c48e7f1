"""Shared fixtures: scripted backends that stand in for real providers."""

import json
import threading
from typing import Callable, Optional, Union

import pytest

from analyzic.llm.backends import LLMCallResult
from analyzic.orchestrator.schemas import AnalysisTemplates, PhaseTemplate, PromptContext
from analyzic.providers.base import AnalysisProvider
from analyzic.providers.registry import ProviderRegistry

Reply = Union[str, Exception, Callable[[str, str], str]]


class FakeBackend:
    """ModelBackend that returns scripted replies and records every call."""

    def __init__(self, provider_id: str, reply: Reply, model_id: str = "fake-model"):
        self.provider_id = provider_id
        self.model_id = model_id
        self.reply = reply
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        images: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        label: str = "",
    ) -> LLMCallResult:
        with self._lock:
            self.calls.append({
                "system_prompt": system_prompt,
                "user_message": user_message,
                "images": images,
                "label": label,
            })
        reply = self.reply
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(system_prompt, user_message)
        return LLMCallResult(
            content=reply,
            model_id=self.model_id,
            input_tokens=10,
            output_tokens=5,
            duration_ms=1,
        )


def score_reply(score: float, **extra) -> str:
    """A minimal valid result as backend text."""
    return json.dumps({"overallScore": score, **extra})


def make_registry(replies: dict[str, Reply], **provider_kwargs) -> ProviderRegistry:
    """Registry of providers backed by FakeBackends, keyed by id."""
    return ProviderRegistry(
        AnalysisProvider(FakeBackend(provider_id, reply), **provider_kwargs)
        for provider_id, reply in replies.items()
    )


def backend_of(registry: ProviderRegistry, provider_id: str) -> FakeBackend:
    return registry[provider_id]._backend


@pytest.fixture
def templates() -> AnalysisTemplates:
    return AnalysisTemplates(
        initial=PhaseTemplate(
            system_prompt="You analyze code.",
            user_prompt_template="Analyze:\n{{code}}",
        ),
        rethink=PhaseTemplate(
            system_prompt="You reconsider.",
            user_prompt_template="Reconsider:\n{{code}}",
        ),
        synthesis=PhaseTemplate(
            system_prompt="You synthesize.",
            user_prompt_template="Synthesize for:\n{{code}}",
        ),
    )


@pytest.fixture
def context() -> PromptContext:
    return PromptContext(user_vars={"code": "contract A {}"})


@pytest.fixture(autouse=True)
def no_api_logging(monkeypatch):
    """Keep tests from writing call logs unless a test opts in."""
    monkeypatch.setattr("analyzic.providers.call_log.ENABLE_API_LOGGING", False)
