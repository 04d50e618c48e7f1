"""Domain registry - loads analysis domain definitions from YAML files.

Each file in definitions/ describes one domain: its prompt templates for
every pipeline phase and the result schema its providers must satisfy.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from analyzic.domains.schemas import RESULT_SCHEMAS, BaseAnalysisResult
from analyzic.orchestrator.schemas import AnalysisTemplates

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class DomainDefinition(BaseModel):
    """One analysis domain."""

    key: str
    name: str
    description: str = ""
    result_schema: str = Field(description="Key into RESULT_SCHEMAS")
    large_input_var: Optional[str] = Field(
        default=None,
        description="User variable truncated in synthesis prompts (e.g. 'code')",
    )
    templates: AnalysisTemplates

    @property
    def result_model(self) -> type[BaseAnalysisResult]:
        return RESULT_SCHEMAS[self.result_schema]


class DomainRegistry:
    """Registry of analysis domains loaded from YAML definitions."""

    def __init__(self, definitions_dir: Optional[Path] = None):
        self.definitions_dir = definitions_dir or DEFINITIONS_DIR
        self._domains: dict[str, DomainDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all domain definitions."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            logger.warning(f"Definitions directory not found: {self.definitions_dir}")
            self._loaded = True
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            try:
                with open(yaml_file) as f:
                    data = yaml.safe_load(f)
                domain = DomainDefinition.model_validate(data)
                if domain.result_schema not in RESULT_SCHEMAS:
                    raise ValueError(f"unknown result_schema '{domain.result_schema}'")
                self._domains[domain.key] = domain
                logger.debug(f"Loaded domain: {domain.key}")
            except Exception as e:
                logger.error(f"Failed to load domain from {yaml_file}: {e}")

        self._loaded = True
        logger.info(f"Loaded {len(self._domains)} analysis domains")

    def get(self, key: str) -> Optional[DomainDefinition]:
        """Get a domain by key."""
        self.load()
        return self._domains.get(key)

    def list_keys(self) -> list[str]:
        """List all domain keys."""
        self.load()
        return list(self._domains.keys())

    def count(self) -> int:
        self.load()
        return len(self._domains)


# Global registry instance
_registry: Optional[DomainRegistry] = None


def get_domain_registry() -> DomainRegistry:
    """Get the global domain registry instance."""
    global _registry
    if _registry is None:
        _registry = DomainRegistry()
        _registry.load()
    return _registry
