"""Prompt assembly for pipeline phases.

Templates use {{name}} placeholders. Unknown names (and values that are
None or render empty) are left in place verbatim rather than raising, so a
template can be shared across domains that supply different variables.
"""

import json
import logging
import re
from typing import Any, Iterable

from analyzic.config import MAX_CODE_LENGTH_FOR_SYNTHESIS, SYNTHESIS_TRUNCATION_MARKER
from analyzic.orchestrator.schemas import ProviderResult

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

SYNTHESIS_INSTRUCTION = (
    "Synthesize these analyses into a final, comprehensive result. Resolve any "
    "disagreements between providers, and provide weighted scores based on the "
    "consensus. Highlight areas of high agreement and areas where providers "
    "significantly disagreed. Provide only the JSON object."
)

RETHINK_INSTRUCTION = (
    "Based on these other perspectives, reconsider your analysis. Where do you "
    "agree or disagree? Provide your revised assessment."
)


def build_prompt(template: str, variables: dict[str, Any]) -> str:
    """Substitute {{name}} placeholders from variables."""

    def _substitute(match: re.Match) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        text = str(value)
        return text or match.group(0)

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def truncate_variable(
    variables: dict[str, Any],
    name: str,
    max_chars: int = MAX_CODE_LENGTH_FOR_SYNTHESIS,
    marker: str = SYNTHESIS_TRUNCATION_MARKER,
) -> dict[str, Any]:
    """Return a copy of variables with one long string value cut to max_chars."""
    value = variables.get(name)
    if not isinstance(value, str) or len(value) <= max_chars:
        return dict(variables)

    logger.info(f"Truncating '{name}' for synthesis: {len(value):,} -> {max_chars:,} chars")
    truncated = dict(variables)
    truncated[name] = value[:max_chars] + marker
    return truncated


def format_result_block(provider_result: ProviderResult) -> str:
    """Render one provider's structured result as a labeled markdown block."""
    body = json.dumps(provider_result.result.model_dump(by_alias=True), indent=2)
    return f"### {provider_result.provider_id}\n{body}"


def build_synthesis_prompt(user_prompt: str, all_results: Iterable[ProviderResult]) -> str:
    blocks = "\n\n".join(format_result_block(r) for r in all_results)
    return (
        f"{user_prompt}\n\n"
        f"## All Provider Analyses\n{blocks}\n\n"
        f"{SYNTHESIS_INSTRUCTION}"
    )


def build_rethink_prompt(
    user_prompt: str,
    previous_result: ProviderResult,
    other_results: Iterable[ProviderResult],
) -> str:
    previous = json.dumps(previous_result.result.model_dump(by_alias=True), indent=2)
    others = "\n\n".join(format_result_block(r) for r in other_results)
    return (
        f"{user_prompt}\n\n"
        f"## Your Previous Analysis\n{previous}\n\n"
        f"## Other AI Perspectives\n{others}\n\n"
        f"{RETHINK_INSTRUCTION}"
    )
