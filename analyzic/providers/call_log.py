"""Best-effort request/response logging for provider calls.

When ENABLE_API_LOGGING is on, every call gets its own folder under
<API_LOG_DIR>/<provider>/ holding request.json (full data), request.txt
(human-readable) and any decoded input images. Folder names are unique per
call, so concurrent calls never write to the same place.

Nothing here may fail a provider call: every error is logged and dropped.
"""

import base64
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from analyzic.config import API_LOG_DIR, ENABLE_API_LOGGING
from analyzic.llm.backends import split_data_url

logger = logging.getLogger(__name__)

RULE = "=" * 80
SUBRULE = "-" * 80


def image_extension(mime_type: str) -> str:
    """File extension for an image MIME type ('image/svg+xml' -> 'svg')."""
    subtype = mime_type.split("/")[-1].split("+")[0].split(";")[0].strip()
    return subtype or "png"


class ApiCallLogger:
    """Writes one folder per provider call."""

    def __init__(self, provider_id: str, log_dir: Path):
        self.provider_id = provider_id
        self.log_dir = Path(log_dir) / provider_id

    @classmethod
    def from_env(cls, provider_id: str) -> Optional["ApiCallLogger"]:
        """Logger configured from the environment, or None when disabled."""
        if not ENABLE_API_LOGGING:
            return None
        return cls(provider_id, Path(API_LOG_DIR))

    def log_call(
        self,
        method: str,
        *,
        system_prompt: str,
        user_prompt: str,
        images: Optional[list[str]],
        content: str,
        tokens_used: int,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> Optional[Path]:
        """Write the call to disk. Returns the call folder, or None on failure."""
        try:
            return self._write(
                method, system_prompt, user_prompt, images or [],
                content, tokens_used, latency_ms, error,
            )
        except Exception as e:
            logger.error(f"[{self.provider_id}] Failed to log API call for {method}: {e}")
            return None

    def _write(
        self,
        method: str,
        system_prompt: str,
        user_prompt: str,
        images: list[str],
        content: str,
        tokens_used: int,
        latency_ms: int,
        error: Optional[str],
    ) -> Path:
        now = datetime.now()
        folder_name = f"{method}_{now.strftime('%Y-%m-%dT%H-%M-%S-%f')}_{uuid.uuid4().hex[:6]}"
        call_dir = self.log_dir / folder_name
        call_dir.mkdir(parents=True, exist_ok=True)

        image_files = [self._save_image(call_dir, idx, image) for idx, image in enumerate(images)]

        log_data = {
            "provider": self.provider_id,
            "method": method,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request": {
                "systemPrompt": system_prompt,
                "userPrompt": user_prompt,
                "imagesCount": len(images),
                "imageFiles": [f for f in image_files if f],
            },
            "response": {
                "content": content,
                "tokensUsed": tokens_used,
                "latencyMs": latency_ms,
                "error": error,
            },
        }
        (call_dir / "request.json").write_text(json.dumps(log_data, indent=2))

        lines = [
            RULE,
            f"PROVIDER: {self.provider_id}",
            f"METHOD: {method}",
            f"TIMESTAMP: {log_data['timestamp']}",
            RULE,
            "",
            "SYSTEM PROMPT:",
            SUBRULE,
            system_prompt,
            "",
            "USER PROMPT:",
            SUBRULE,
            user_prompt,
            "",
        ]
        if images:
            lines += ["IMAGES:", SUBRULE]
            for idx, image in enumerate(images):
                size_kb = round(len(image) * 3 / 4 / 1024)
                lines.append(f"Image {idx + 1}: ~{size_kb}KB")
                lines.append(f"  Saved as: {image_files[idx] or '[failed to save]'}")
            lines.append("")
        lines += ["API RESPONSE:", SUBRULE]
        lines.append(f"ERROR: {error}" if error else content)
        lines += [
            "",
            "METADATA:",
            SUBRULE,
            f"Tokens Used: {tokens_used}",
            f"Latency: {latency_ms}ms",
            f"Log Directory: {folder_name}",
            RULE,
        ]
        (call_dir / "request.txt").write_text("\n".join(lines) + "\n")

        return call_dir

    def _save_image(self, call_dir: Path, idx: int, image: str) -> Optional[str]:
        try:
            mime_type, data = split_data_url(image)
            extension = image_extension(mime_type)
            filename = f"input_image_{idx + 1}.{extension}"
            (call_dir / filename).write_bytes(base64.b64decode(data))
            return filename
        except Exception as e:
            logger.warning(f"[{self.provider_id}] Failed to save image {idx + 1}: {e}")
            return None
