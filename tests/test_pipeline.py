"""Tests for the analysis pipeline controller."""

import threading

import pytest

from analyzic.config import SYNTHESIS_TRUNCATION_MARKER
from analyzic.errors import AllProvidersFailedError, ConfigurationError
from analyzic.orchestrator.pipeline import (
    AnalysisOrchestrator,
    compute_final_score,
    format_for_storage,
)
from analyzic.orchestrator.prompts import build_prompt, truncate_variable
from analyzic.orchestrator.schemas import (
    AnalysisConfig,
    AnalysisPhase,
    PipelineState,
    PromptContext,
)

from .conftest import backend_of, make_registry, score_reply


def _config(providers, master, **kwargs) -> AnalysisConfig:
    return AnalysisConfig(providers=providers, master_provider=master, **kwargs)


def test_all_succeed(templates, context):
    registry = make_registry({
        "p1": score_reply(70),
        "p2": score_reply(90),
        "p3": score_reply(75),
    })
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "p3"), templates, context
    )

    assert list(result.initial_results) == ["p1", "p2"]
    assert result.synthesis_result.provider_id == "p3"
    assert result.final_score == 75
    assert result.errors == []
    assert result.has_partial_results is False
    assert result.state == PipelineState.COMPLETED


def test_partial_failure_keeps_successes(templates, context):
    registry = make_registry({
        "p1": score_reply(70),
        "p2": RuntimeError("503 overloaded"),
        "p3": "garbage",
    })
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2", "p3"], "p1"), templates, context
    )

    assert list(result.initial_results) == ["p1"]
    assert [e.provider_id for e in result.errors] == ["p2", "p3"]
    assert all(e.phase == AnalysisPhase.INITIAL for e in result.errors)
    assert "503 overloaded" in result.errors[0].error
    assert result.has_partial_results is True
    assert result.state == PipelineState.PARTIAL


def test_all_fail_raises_with_every_reason(templates, context):
    registry = make_registry({
        "p1": RuntimeError("timeout"),
        "p2": "not json",
    })
    with pytest.raises(AllProvidersFailedError) as exc_info:
        AnalysisOrchestrator(registry).run_pipeline(
            _config(["p1", "p2"], "p1"), templates, context
        )

    message = str(exc_info.value)
    assert "p1: " in message and "timeout" in message
    assert "p2: " in message and "Failed to parse" in message
    assert len(exc_info.value.errors) == 2


def test_synthesis_failure_falls_back_to_mean(templates, context):
    registry = make_registry({
        "p1": score_reply(70),
        "p2": score_reply(90),
        "master": RuntimeError("synthesis timed out"),
    })
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "master"), templates, context
    )

    assert result.synthesis_result is None
    assert result.final_score == 80
    assert result.has_partial_results is True
    assert result.errors[-1].phase == AnalysisPhase.SYNTHESIS
    assert result.errors[-1].provider_id == "master"


def test_synthesis_score_wins_over_initial_scores(templates, context):
    registry = make_registry({
        "p1": score_reply(10),
        "p2": score_reply(20),
        "p3": score_reply(75),
    })
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "p3"), templates, context
    )
    assert result.final_score == 75


def test_master_can_also_analyze(templates, context):
    registry = make_registry({"p1": score_reply(60), "p2": score_reply(80)})
    AnalysisOrchestrator(registry).run_pipeline(_config(["p1", "p2"], "p1"), templates, context)

    labels = [c["label"] for c in backend_of(registry, "p1").calls]
    assert sorted(labels) == ["p1:analyze", "p1:synthesize"]


def test_validation_lists_every_missing_provider(templates, context):
    registry = make_registry({"p1": score_reply(60)})
    orchestrator = AnalysisOrchestrator(registry)

    with pytest.raises(ConfigurationError) as exc_info:
        orchestrator.run_pipeline(_config(["p1", "x1", "x2"], "x3"), templates, context)

    message = str(exc_info.value)
    assert "x1" in message and "x2" in message and "x3" in message
    assert backend_of(registry, "p1").calls == []


def test_initial_calls_run_concurrently(templates, context):
    barrier = threading.Barrier(3, timeout=5)

    def wait_for_peers(system_prompt, user_message):
        if "synthesize" not in system_prompt.lower():
            barrier.wait()
        return score_reply(50)

    registry = make_registry({pid: wait_for_peers for pid in ("p1", "p2", "p3")})
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2", "p3"], "p1"), templates, context
    )
    assert len(result.initial_results) == 3


def test_prompts_built_from_templates(templates):
    context = PromptContext(system_suffix="\nExtra context.", user_vars={"code": "X"})
    registry = make_registry({"p1": score_reply(50)})
    AnalysisOrchestrator(registry).run_pipeline(_config(["p1"], "p1"), templates, context)

    analyze_call, synthesize_call = backend_of(registry, "p1").calls
    assert analyze_call["system_prompt"] == "You analyze code.\nExtra context."
    assert analyze_call["user_message"] == "Analyze:\nX"
    assert synthesize_call["system_prompt"] == "You synthesize."
    assert synthesize_call["user_message"].startswith("Synthesize for:\nX")


def test_images_shared_by_every_call(templates, context):
    images = ["data:image/png;base64,AAAA"]
    registry = make_registry({"p1": score_reply(50), "p2": score_reply(60)})
    AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "p2"), templates, context, images=images
    )

    for pid in ("p1", "p2"):
        assert all(c["images"] == images for c in backend_of(registry, pid).calls)


def test_synthesis_truncates_large_code_only_when_asked(templates):
    code = "x" * 20000
    context = PromptContext(user_vars={"code": code})

    registry = make_registry({"p1": score_reply(50)})
    AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1"], "p1", truncate_for_synthesis=True), templates, context
    )
    analyze_call, synthesize_call = backend_of(registry, "p1").calls
    assert code in analyze_call["user_message"]
    assert SYNTHESIS_TRUNCATION_MARKER in synthesize_call["user_message"]
    assert code not in synthesize_call["user_message"]

    registry = make_registry({"p1": score_reply(50)})
    AnalysisOrchestrator(registry).run_pipeline(_config(["p1"], "p1"), templates, context)
    assert code in backend_of(registry, "p1").calls[1]["user_message"]


def test_truncate_variable_below_budget_is_untouched():
    variables = {"code": "short"}
    assert truncate_variable(variables, "code", max_chars=10) == {"code": "short"}

    truncated = truncate_variable({"code": "abcdefghijkl"}, "code", max_chars=5, marker="!")
    assert truncated == {"code": "abcde!"}


def test_build_prompt_leaves_unknown_placeholders():
    assert build_prompt("{{a}} and {{b}}", {"a": 1}) == "1 and {{b}}"
    assert build_prompt("{{a}}", {"a": None}) == "{{a}}"


def test_progress_callback_reports_each_provider(templates, context):
    messages = []
    registry = make_registry({"p1": score_reply(50), "p2": RuntimeError("boom")})
    AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "p1"), templates, context, on_progress=messages.append
    )

    assert "p1 complete" in messages
    assert "p2 failed" in messages
    assert "p1 synthesis complete" in messages


def test_rethink_phase_revises_each_result(templates, context):
    registry = make_registry({"p1": score_reply(40), "p2": score_reply(80)})
    orchestrator = AnalysisOrchestrator(registry)
    initial, _ = orchestrator.run_initial_phase(_config(["p1", "p2"], "p1"), templates, context)

    revised, errors = orchestrator.run_rethink_phase(templates, context, initial)

    assert list(revised) == ["p1", "p2"]
    assert errors == []
    p1_rethink = backend_of(registry, "p1").calls[-1]
    assert p1_rethink["label"] == "p1:rethink"
    assert "### p2" in p1_rethink["user_message"]
    assert "### p1" not in p1_rethink["user_message"]


def test_synthesis_with_no_results_records_error(templates, context):
    registry = make_registry({"p1": score_reply(50)})
    result, error = AnalysisOrchestrator(registry).run_synthesis_phase(
        "p1", templates, context, {}
    )
    assert result is None
    assert error.phase == AnalysisPhase.SYNTHESIS
    assert backend_of(registry, "p1").calls == []


def test_final_score_rounds_half_up(templates, context):
    registry = make_registry({"a": score_reply(70), "b": score_reply(75)})
    orchestrator = AnalysisOrchestrator(registry)
    initial, _ = orchestrator.run_initial_phase(_config(["a", "b"], "a"), templates, context)

    assert compute_final_score(None, initial) == 73
    assert compute_final_score(None, {}) == 0


def test_format_for_storage(templates, context):
    registry = make_registry({"p1": score_reply(70), "p2": score_reply(90)})
    result = AnalysisOrchestrator(registry).run_pipeline(
        _config(["p1", "p2"], "p2"), templates, context
    )
    records = format_for_storage("an-1", result)

    assert [(r.provider, r.phase) for r in records] == [
        ("p1", AnalysisPhase.INITIAL),
        ("p2", AnalysisPhase.INITIAL),
        ("p2", AnalysisPhase.SYNTHESIS),
    ]
    assert records[0].analysis_id == "an-1"
    assert records[0].result == {"provider": "p1", "overallScore": 70}
    assert records[0].tokens_used == 15
