"""Tests for the analysis HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from analyzic.api.main import app
from analyzic.api.store import get_response_store
from analyzic.providers import registry as provider_registry

from .conftest import FakeBackend

CONTRACT_RESULT = {
    "securityScore": 60,
    "gasEfficiencyScore": 70,
    "codeQualityScore": 80,
    "securityFindings": [],
    "gasOptimizations": [],
    "summary": "Reasonable contract",
    "strengths": ["Small surface"],
    "weaknesses": [],
}


def contract_reply(score: float) -> str:
    return json.dumps({"overallScore": score, **CONTRACT_RESULT})


@pytest.fixture
def replies() -> dict:
    return {
        "openai": contract_reply(70),
        "anthropic": contract_reply(90),
        "gemini": contract_reply(82),
    }


@pytest.fixture
def client(monkeypatch, replies):
    """App client with every provider keyed and served by fake backends."""
    for provider_id in ("openai", "anthropic", "gemini"):
        monkeypatch.setenv(f"{provider_id.upper()}_API_KEY", f"{provider_id}-key")
        monkeypatch.setenv(f"{provider_id.upper()}_MODEL_TIER_1", f"{provider_id}-small")

    def fake_get_backend(provider_id, api_key, tier, tier_config):
        return FakeBackend(provider_id, replies[provider_id])

    monkeypatch.setattr(provider_registry, "get_backend", fake_get_backend)
    get_response_store().clear()
    with TestClient(app) as test_client:
        yield test_client


def _analyze(client, **overrides):
    body = {
        "domain": "contract_analysis",
        "providers": ["openai", "anthropic"],
        "master_provider": "gemini",
        "user_vars": {"code": "contract Vault {}"},
    }
    body.update(overrides)
    return client.post("/v1/analyses", json=body)


def test_health(client):
    response = client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["configured_providers"] == ["anthropic", "gemini", "openai"]


def test_list_domains(client):
    keys = [d["key"] for d in client.get("/v1/domains").json()]
    assert "contract_analysis" in keys


def test_create_analysis(client):
    response = _analyze(client)
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "completed"
    assert data["final_score"] == 82
    assert data["providers_used"] == ["openai", "anthropic"]
    assert [(r["provider"], r["phase"]) for r in data["results"]] == [
        ("openai", "initial"),
        ("anthropic", "initial"),
        ("gemini", "synthesis"),
    ]
    assert data["results"][0]["result"]["securityScore"] == 60

    stored = client.get(f"/v1/analyses/{data['analysis_id']}")
    assert stored.status_code == 200
    assert stored.json()["final_score"] == 82


def test_unknown_domain_is_404(client):
    assert _analyze(client, domain="poetry").status_code == 404


def test_unknown_analysis_is_404(client):
    assert client.get("/v1/analyses/nope").status_code == 404
    assert client.post("/v1/analyses/nope/retry", json={}).status_code == 404


def test_missing_key_is_400(client, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY")
    response = _analyze(client)
    assert response.status_code == 400
    assert "anthropic" in response.json()["detail"]


def test_all_providers_failing_is_502(client, replies):
    replies["openai"] = "nope"
    replies["anthropic"] = RuntimeError("down")
    response = _analyze(client)
    assert response.status_code == 502
    assert "openai" in response.json()["detail"]
    assert "anthropic" in response.json()["detail"]


def test_retry_with_substitute(client, replies):
    replies["anthropic"] = RuntimeError("overloaded")
    first = _analyze(client).json()
    assert first["status"] == "partial"
    assert first["errors"][0]["provider"] == "anthropic"

    response = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry",
        json={
            "failed_providers": ["anthropic"],
            "substitutions": [{"original": "anthropic", "substitute": "gemini"}],
        },
    )
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "completed"
    assert data["providers_used"] == ["openai", "gemini"]
    initial = [r["provider"] for r in data["results"] if r["phase"] == "initial"]
    synthesis = [r for r in data["results"] if r["phase"] == "synthesis"]
    assert initial == ["openai", "gemini"]
    assert len(synthesis) == 1


def test_synthesis_only_retry(client, replies):
    replies["gemini"] = RuntimeError("synthesis failed")
    first = _analyze(client).json()
    assert first["final_score"] == 80
    assert first["errors"][0]["phase"] == "synthesis"

    response = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry",
        json={"phase": "synthesis", "new_master_provider": "anthropic"},
    )
    data = response.json()
    assert response.status_code == 200
    assert data["master_provider"] == "anthropic"
    assert data["final_score"] == 90
    assert data["errors"] == []


def test_retry_rethink_phase_rejected(client):
    first = _analyze(client).json()
    response = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry", json={"phase": "rethink"}
    )
    assert response.status_code == 422


def test_contract_context_reaches_system_prompt(client, monkeypatch, replies):
    backends = {}

    def recording_get_backend(provider_id, api_key, tier, tier_config):
        backends[provider_id] = FakeBackend(provider_id, replies[provider_id])
        return backends[provider_id]

    monkeypatch.setattr(provider_registry, "get_backend", recording_get_backend)
    _analyze(client, contract_context={"contract_name": "Vault"})

    system_prompt = backends["openai"].calls[0]["system_prompt"]
    assert "## Additional Contract Context" in system_prompt
    assert "Contract Name: Vault" in system_prompt


def test_retry_keeps_errors_of_providers_not_retried(client, replies):
    replies["openai"] = RuntimeError("rate limited")
    replies["anthropic"] = RuntimeError("overloaded")
    replies["gemini"] = contract_reply(82)
    first = _analyze(client, providers=["openai", "anthropic", "gemini"]).json()
    assert {e["provider"] for e in first["errors"]} == {"openai", "anthropic"}

    replies["openai"] = contract_reply(70)
    response = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry",
        json={"failed_providers": ["openai"]},
    )
    data = response.json()

    assert response.status_code == 200
    assert data["status"] == "partial"
    assert data["has_partial_results"] is True
    assert [(e["provider"], e["phase"]) for e in data["errors"]] == [("anthropic", "initial")]


def test_retry_drops_stale_synthesis_error(client, replies):
    replies["gemini"] = RuntimeError("synthesis failed")
    first = _analyze(client).json()
    assert first["errors"][0]["phase"] == "synthesis"

    replies["gemini"] = contract_reply(85)
    data = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry", json={"phase": "synthesis"}
    ).json()
    assert data["errors"] == []
    assert data["status"] == "completed"


def test_substituted_provider_is_not_built(client, replies, monkeypatch):
    replies["anthropic"] = RuntimeError("overloaded")
    first = _analyze(client).json()

    def strict_get_backend(provider_id, api_key, tier, tier_config):
        if provider_id == "anthropic":
            raise AssertionError("replaced provider should not be constructed")
        return FakeBackend(provider_id, replies[provider_id])

    monkeypatch.setattr(provider_registry, "get_backend", strict_get_backend)
    response = client.post(
        f"/v1/analyses/{first['analysis_id']}/retry",
        json={
            "failed_providers": ["anthropic"],
            "substitutions": [{"original": "anthropic", "substitute": "gemini"}],
        },
    )
    assert response.status_code == 200
    assert response.json()["providers_used"] == ["openai", "gemini"]


def test_stored_timestamps_are_timezone_aware(client):
    from datetime import datetime

    analysis_id = _analyze(client).json()["analysis_id"]
    stored = get_response_store().get(analysis_id)
    assert datetime.fromisoformat(stored.created_at).tzinfo is not None


def test_app_import_string_resolves():
    from uvicorn.importer import import_from_string

    assert import_from_string("analyzic.api.main:app") is app
