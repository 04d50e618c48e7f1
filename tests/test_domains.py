"""Tests for domain definitions and context prompts."""

from analyzic.domains.context import ContractContext, build_contract_context_prompt
from analyzic.domains.registry import DomainRegistry
from analyzic.domains.schemas import ContractAnalysisResult, UXAnalysisResult


def test_builtin_domains_load():
    registry = DomainRegistry()

    assert registry.list_keys() == ["contract_analysis", "ux_analysis"]
    contract = registry.get("contract_analysis")
    assert contract.result_model is ContractAnalysisResult
    assert contract.large_input_var == "code"
    assert "{{code}}" in contract.templates.initial.user_prompt_template
    assert "{{code}}" in contract.templates.synthesis.user_prompt_template

    ux = registry.get("ux_analysis")
    assert ux.result_model is UXAnalysisResult
    assert "{{imageCount}}" in ux.templates.initial.user_prompt_template


def test_unknown_domain_is_none():
    assert DomainRegistry().get("poetry") is None


def test_invalid_definition_is_skipped(tmp_path):
    (tmp_path / "good.yaml").write_text(
        "key: good\n"
        "name: Good\n"
        "result_schema: base\n"
        "templates:\n"
        "  initial: {system_prompt: s, user_prompt_template: u}\n"
        "  rethink: {system_prompt: s, user_prompt_template: u}\n"
        "  synthesis: {system_prompt: s, user_prompt_template: u}\n"
    )
    (tmp_path / "bad.yaml").write_text("key: bad\nname: Bad\nresult_schema: nope\n")

    registry = DomainRegistry(tmp_path)
    assert registry.list_keys() == ["good"]
    assert registry.count() == 1


def test_missing_definitions_dir(tmp_path):
    assert DomainRegistry(tmp_path / "missing").count() == 0


def test_contract_context_prompt():
    prompt = build_contract_context_prompt(
        ContractContext(contract_name="Vault", blockchain="Ethereum")
    )
    assert prompt.startswith("\n\n## Additional Contract Context\n")
    assert "Contract Name: Vault" in prompt
    assert "Target Blockchain: Ethereum" in prompt
    assert "Solidity Version" not in prompt


def test_empty_contract_context_prompt():
    assert build_contract_context_prompt(None) == ""
    assert build_contract_context_prompt(ContractContext()) == ""
