"""System-prompt suffixes built from caller-supplied context."""

from typing import Optional

from pydantic import BaseModel


class ContractContext(BaseModel):
    """Optional facts about the contract under audit."""

    contract_name: Optional[str] = None
    blockchain: Optional[str] = None
    solidity_version: Optional[str] = None
    purpose: Optional[str] = None
    github_repo: Optional[str] = None


def build_contract_context_prompt(context: Optional[ContractContext]) -> str:
    """Render contract context as a markdown section for the system prompt."""
    if context is None:
        return ""

    lines = []
    if context.contract_name:
        lines.append(f"Contract Name: {context.contract_name}")
    if context.blockchain:
        lines.append(f"Target Blockchain: {context.blockchain}")
    if context.solidity_version:
        lines.append(f"Solidity Version: {context.solidity_version}")
    if context.purpose:
        lines.append(f"Contract Purpose: {context.purpose}")
    if context.github_repo:
        lines.append(f"GitHub Repository: {context.github_repo}")

    if not lines:
        return ""
    return "\n\n## Additional Contract Context\n" + "\n".join(lines) + "\n"
