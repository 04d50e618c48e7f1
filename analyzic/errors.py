"""Error taxonomy for the analysis pipeline.

ConfigurationError is raised before any provider call is dispatched.
ProviderCallError subclasses are raised by a single provider call and are
always caught at the phase boundary, where they become ProviderError entries.
AllProvidersFailedError is the only error the orchestrator raises once
dispatch has started.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """Missing credential, missing model tier, or unknown provider id."""


class ProviderCallError(RuntimeError):
    """A single provider call failed."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(message)
        self.provider_id = provider_id


class TransportError(ProviderCallError):
    """Network or HTTP failure talking to the backend."""


class ParseError(ProviderCallError):
    """Backend text could not be parsed or repaired into JSON."""

    def __init__(
        self,
        provider_id: str,
        message: str,
        content_length: int = 0,
        preview: str = "",
    ):
        super().__init__(provider_id, message)
        self.content_length = content_length
        self.preview = preview


class SchemaValidationError(ProviderCallError):
    """Well-formed JSON with the wrong shape or out-of-range values."""


class AllProvidersFailedError(RuntimeError):
    """Every provider failed in the initial analysis phase."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []
