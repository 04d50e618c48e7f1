"""LLM transport layer.

Backends talk to one provider each; parsing turns their raw text into JSON;
tiers map quality levels to concrete model names.
"""

from analyzic.llm.backends import (
    AnthropicBackend,
    GeminiBackend,
    LLMCallResult,
    ModelBackend,
    OpenAIBackend,
)
from analyzic.llm.factory import get_backend
from analyzic.llm.parsing import parse_llm_json_response, repair_truncated_json
from analyzic.llm.tiers import ModelTier, build_model_tier_config_from_env, resolve_model

__all__ = [
    "AnthropicBackend",
    "GeminiBackend",
    "LLMCallResult",
    "ModelBackend",
    "OpenAIBackend",
    "get_backend",
    "parse_llm_json_response",
    "repair_truncated_json",
    "ModelTier",
    "build_model_tier_config_from_env",
    "resolve_model",
]
