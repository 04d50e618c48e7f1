"""LLM backend abstraction for multi-provider analysis.

Provides a unified interface for calling different LLM providers
(OpenAI, Anthropic Claude, Google Gemini) with a consistent response format.

Each backend handles provider-specific concerns:
- Client creation and timeout configuration
- Request shape, including base64 image attachments
- Response text extraction and token counting

The provider layer handles provider-agnostic concerns:
- JSON extraction and repair
- Schema validation
- Request/response logging
"""

import base64
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16384
DATA_URL_PATTERN = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)


@dataclass
class LLMCallResult:
    """Normalized response from any LLM backend."""

    content: str
    model_id: str
    input_tokens: int
    output_tokens: int
    duration_ms: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def split_data_url(image: str) -> tuple[str, str]:
    """Split a 'data:<mime>;base64,<data>' URL into (mime_type, data)."""
    match = DATA_URL_PATTERN.match(image)
    if not match:
        raise ValueError("Invalid base64 image format (expected a data: URL)")
    return match.group(1), match.group(2)


def _timeout():
    import httpx

    return httpx.Timeout(
        connect=30.0,
        read=600.0,  # large synthesis responses
        write=120.0,  # prompts with several images
        pool=30.0,
    )


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol for LLM backend implementations."""

    @property
    def provider_id(self) -> str: ...

    @property
    def model_id(self) -> str: ...

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        images: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        label: str = "",
    ) -> LLMCallResult: ...


class OpenAIBackend:
    """OpenAI chat completions backend over plain HTTPS.

    JSON mode (response_format=json_object) is only requested for text-only
    calls; vision requests reject it.
    """

    BASE_URL = "https://api.openai.com/v1"

    def __init__(self, model_id: str, api_key: str, max_tokens: int = 8192):
        self._model_id = model_id
        self._api_key = api_key
        self._max_tokens = max_tokens

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def model_id(self) -> str:
        return self._model_id

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        images: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        label: str = "",
    ) -> LLMCallResult:
        import httpx

        start_time = time.time()

        user_content: list[dict[str, Any]] = [{"type": "text", "text": user_message}]
        for image in images or []:
            user_content.append({"type": "image_url", "image_url": {"url": image}})

        body: dict[str, Any] = {
            "model": self._model_id,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "max_completion_tokens": max_tokens or self._max_tokens,
        }
        if not images:
            body["response_format"] = {"type": "json_object"}

        logger.info(
            f"[{label}] OpenAI call: model={self._model_id}, "
            f"~{(len(system_prompt) + len(user_message)) // 4:,} input tokens, "
            f"{len(images or [])} images"
        )

        with httpx.Client(timeout=_timeout()) as client:
            response = client.post(
                f"{self.BASE_URL}/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=body,
            )
        if response.status_code >= 400:
            raise RuntimeError(
                f"OpenAI API error: {response.status_code} - {response.text[:1000]}"
            )

        data = response.json()
        duration_ms = int((time.time() - start_time) * 1000)

        choices = data.get("choices") or [{}]
        raw_text = (choices[0].get("message") or {}).get("content") or ""
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        usage = data.get("usage") or {}
        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            duration_ms=duration_ms,
        )


class AnthropicBackend:
    """Anthropic Claude backend (Messages API via the anthropic SDK)."""

    def __init__(self, model_id: str, api_key: str, max_tokens: int = DEFAULT_MAX_TOKENS):
        self._model_id = model_id
        self._api_key = api_key
        self._max_tokens = max_tokens

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def model_id(self) -> str:
        return self._model_id

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        images: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        label: str = "",
    ) -> LLMCallResult:
        from anthropic import Anthropic

        client = Anthropic(api_key=self._api_key, timeout=_timeout())
        start_time = time.time()

        content: list[dict[str, Any]] = []
        for image in images or []:
            media_type, data = split_data_url(image)
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            })
        content.append({"type": "text", "text": user_message})

        logger.info(
            f"[{label}] Anthropic call: model={self._model_id}, "
            f"~{(len(system_prompt) + len(user_message)) // 4:,} input tokens, "
            f"{len(images or [])} images"
        )

        response = client.messages.create(
            model=self._model_id,
            max_tokens=max_tokens or self._max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
        )

        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                raw_text += block.text

        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        logger.info(
            f"[{label}] Anthropic completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms"
        )

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )


class GeminiBackend:
    """Google Gemini backend.

    Requests JSON output natively (response_mime_type). Images are sent as
    inline bytes parts after the text part.

    Requires google-genai package: pip install google-genai
    """

    def __init__(self, model_id: str, api_key: str, max_tokens: int = 8192):
        self._model_id = model_id
        self._api_key = api_key
        self._max_tokens = max_tokens

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        """Get a Gemini client. Lazy import to avoid requiring google-genai."""
        try:
            from google import genai
        except ImportError:
            raise RuntimeError(
                "google-genai package not installed. "
                "Install with: pip install google-genai"
            )
        return genai.Client(api_key=self._api_key)

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        images: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        from google.genai import types

        start_time = time.time()

        contents: list[Any] = [user_message]
        for image in images or []:
            mime_type, data = split_data_url(image)
            contents.append(
                types.Part.from_bytes(data=base64.b64decode(data), mime_type=mime_type)
            )

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            max_output_tokens=max_tokens or self._max_tokens,
            temperature=0.7,
            response_mime_type="application/json",
        )

        estimated_input_tokens = (len(system_prompt) + len(user_message)) // 4
        logger.info(
            f"[{label}] Gemini call: model={self._model_id}, "
            f"~{estimated_input_tokens:,} input tokens, {len(images or [])} images"
        )

        response = client.models.generate_content(
            model=self._model_id,
            contents=contents,
            config=config,
        )

        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = ""
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if getattr(part, "thought", False):
                    continue
                raw_text += getattr(part, "text", "") or ""

        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", None) or estimated_input_tokens
        output_tokens = getattr(usage, "candidates_token_count", None) or len(raw_text) // 4

        logger.info(
            f"[{label}] Gemini completed: {input_tokens}+{output_tokens} tokens, "
            f"{duration_ms}ms"
        )

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )
