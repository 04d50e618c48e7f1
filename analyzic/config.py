"""Environment-driven settings.

Credentials and model names are never hardcoded: each provider reads
<PROVIDER>_API_KEY and <PROVIDER>_MODEL_TIER_<N> from the environment.
"""

import os

SUPPORTED_PROVIDERS = ("openai", "anthropic", "gemini")

# Large code inputs are cut to this many characters in the synthesis prompt
MAX_CODE_LENGTH_FOR_SYNTHESIS = int(
    os.environ.get("MAX_CODE_LENGTH_FOR_SYNTHESIS", "15000")
)
SYNTHESIS_TRUNCATION_MARKER = (
    "\n\n// ... (code truncated for synthesis to prevent token overflow)"
)

# Per-call request/response logs (local debugging only)
ENABLE_API_LOGGING = os.environ.get("ENABLE_API_LOGGING", "").lower() in ("1", "true", "yes")
API_LOG_DIR = os.environ.get("API_LOG_DIR", "test-logs")


def load_api_keys() -> dict[str, str]:
    """Read provider API keys from the environment.

    Providers without a key are omitted, so they never enter the registry.
    """
    keys = {}
    for provider_id in SUPPORTED_PROVIDERS:
        value = os.environ.get(f"{provider_id.upper()}_API_KEY", "").strip()
        if value:
            keys[provider_id] = value
    return keys
