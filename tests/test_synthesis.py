# tests/test_synthesis.py
from dataclasses import replace

import pytest

from app.features.pages.quality import Evaluation, QualityThresholds, cautious_pass, judge
from app.features.pages.synthesis import (
    ACCEPT,
    HARD_FAIL,
    RETRY,
    QualityHardFailure,
    SynthesisState,
    is_exhausted,
)
from app.lib.seed import perturb_seed
from app.lib.steps import StepRunner
from app.pipeline import build_pipeline
from conftest import COLORED_SCORES, PASS_SCORES, SPARSE_SCORES, png_bytes

T = QualityThresholds()


def _ev(**scores):
    base = dict(PASS_SCORES)
    base.update(scores)
    return judge(base, T)

# -------- Gate --------
def test_judge_applies_thresholds_in_code():
    assert _ev().passed
    assert not _ev(line_art=3).passed
    assert not _ev(background=2).passed
    assert not _ev(anatomy=2).passed
    assert not _ev(composition=2).passed

def test_hands_never_gate():
    ev = _ev(hands=1)
    assert ev.passed
    assert ev.hands == 1

def test_scores_are_clamped():
    ev = judge({"line_art": 9, "background": 0, "anatomy": "x", "composition": 3}, T)
    assert (ev.line_art, ev.background, ev.anatomy, ev.hands) == (5, 1, 1, 5)

def test_fallback_feedback_names_first_failing_dimension():
    assert "Line art" in _ev(line_art=1, background=1, feedback="").feedback
    assert "Background" in _ev(background=1, anatomy=1, feedback="").feedback
    assert "Anatomy" in _ev(anatomy=1, feedback="").feedback
    assert "Composition" in _ev(composition=1, feedback="").feedback
    assert _ev(line_art=1, feedback="Too much gray.").feedback == "Too much gray."

def test_thresholds_are_overridable():
    strict = QualityThresholds(min_background=5)
    assert not judge(dict(PASS_SCORES), strict).passed

def test_cautious_pass_is_marked():
    ev = cautious_pass(T)
    assert ev.passed and ev.fail_open
    assert Evaluation.from_dict(ev.to_dict()) == ev

# -------- State machine --------
def test_is_exhausted_counts_first_attempt():
    assert not is_exhausted(1, 2)
    assert not is_exhausted(2, 2)
    assert is_exhausted(3, 2)
    assert is_exhausted(1, 0)

def test_verdicts():
    state = SynthesisState.start("prompt", 100)
    state.last_evaluation = _ev()
    assert state.verdict(2, T) == ACCEPT

    state.last_evaluation = _ev(line_art=1)
    assert state.verdict(2, T) == RETRY

    last = replace(state, attempt=3)
    assert last.verdict(2, T) == HARD_FAIL

    # exhausted but line art above the floor: keep the image
    last.last_evaluation = _ev(background=1)
    assert last.verdict(2, T) == ACCEPT

def test_next_perturbs_seed_and_clears_image():
    state = SynthesisState.start("p1", 100)
    state.image = {"image_url": "x", "provider_id": "y"}
    state.last_evaluation = _ev(line_art=1)
    nxt = state.next("p2", 7919)
    assert (nxt.attempt, nxt.prompt, nxt.seed) == (2, "p2", perturb_seed(100, 7919))
    assert nxt.image is None and nxt.last_evaluation is None
    assert state.attempt == 1

# -------- Driver --------
def _reference(store):
    return store.put("previews/o1/preview-0-seed-1.png", png_bytes(), "image/png")

def test_first_attempt_pass(pipeline, store, fake_openai):
    res = pipeline.synthesizer.run(order_id="o1", page_number=1, prompt="draw", seed=42, reference_url=_reference(store))
    assert res.attempts == 1
    assert res.seed == 42
    assert res.evaluation.passed
    assert res.image_url in store.objects
    assert [c[0] for c in fake_openai.image_calls] == ["edit"]
    # the reference image is sent as a named file tuple
    name, data, ctype = fake_openai.edit_references[0]
    assert data == png_bytes() and ctype == "image/png"

def test_refine_and_retry_until_pass(pipeline, store, fake_openai, cfg):
    fake_openai.scores = [COLORED_SCORES, PASS_SCORES]
    res = pipeline.synthesizer.run(order_id="o1", page_number=2, prompt="draw", seed=42, reference_url=_reference(store))
    assert res.attempts == 2
    assert res.seed == perturb_seed(42, cfg.seed_retry_offset)
    assert res.prompt.startswith("Refined prompt")
    assert fake_openai.calls["text"] == 1
    assert len(fake_openai.image_calls) == 2

def test_hard_failure_after_budget(pipeline, store, fake_openai, cfg):
    fake_openai.scores = [COLORED_SCORES] * 3
    with pytest.raises(QualityHardFailure) as exc:
        pipeline.synthesizer.run(order_id="o1", page_number=3, prompt="draw", seed=1, reference_url=_reference(store))
    assert exc.value.attempts == cfg.max_quality_retries + 1
    assert exc.value.page_number == 3
    assert len(fake_openai.image_calls) == 3

def test_degraded_but_printable_is_kept(pipeline, store, fake_openai):
    fake_openai.scores = [SPARSE_SCORES] * 3
    res = pipeline.synthesizer.run(order_id="o1", page_number=1, prompt="draw", seed=1, reference_url=_reference(store))
    assert res.attempts == 3
    assert not res.evaluation.passed

def test_evaluator_outage_fails_open(pipeline, store, fake_openai):
    fake_openai.quality_error = RuntimeError("vision model down")
    res = pipeline.synthesizer.run(order_id="o1", page_number=1, prompt="draw", seed=1, reference_url=_reference(store))
    assert res.attempts == 1
    assert res.evaluation.fail_open

def test_evaluator_outage_propagates_when_fail_closed(cfg, store, fake_openai):
    strict = build_pipeline(replace(cfg, quality_gate_fail_open=False), store=store)
    fake_openai.quality_error = RuntimeError("vision model down")
    with pytest.raises(RuntimeError):
        strict.synthesizer.run(order_id="o1", page_number=1, prompt="draw", seed=1, reference_url=_reference(store))

def test_replay_uses_checkpoints(pipeline, store, fake_openai, cfg):
    fake_openai.scores = [COLORED_SCORES, PASS_SCORES]
    ref = _reference(store)
    kwargs = dict(order_id="o1", page_number=1, prompt="draw", seed=5, reference_url=ref)

    first = pipeline.synthesizer.run(**kwargs, checkpoint=StepRunner("generate-book:o1", cfg).run)
    calls = (len(fake_openai.image_calls), dict(fake_openai.calls))
    again = pipeline.synthesizer.run(**kwargs, checkpoint=StepRunner("generate-book:o1", cfg).run)

    assert again.to_dict() == first.to_dict()
    assert (len(fake_openai.image_calls), fake_openai.calls) == calls
