# tests/test_generate_book.py
from dataclasses import replace

import pytest
from fastapi import HTTPException

from app.features.admin.router import resume_order
from app.features.orders.controller import assemble_book, generate_book, run_key
from app.features.pages.synthesis import QualityHardFailure
from app.lib import events, queries
from app.lib.seed import page_seed
from app.lib.steps import NonRetriableError, StepRunner, Suspended
from app.pipeline import build_pipeline
from conftest import COLORED_SCORES, PASS_SCORES, drive, make_paid_order, png_bytes


def _generate(order_id, pipeline, cfg):
    return drive(lambda steps: generate_book(order_id, steps, pipeline), run_key(order_id), cfg)

def test_full_book(pipeline, store, cfg, fake_openai):
    order = make_paid_order(store)
    out = _generate(order.id, pipeline, cfg)

    assert out["status"] == "complete"
    done = queries.get_order(order.id)
    assert done.status == "complete"
    assert done.pdf_url == out["pdf_url"] == f"mem://books/{order.id}.pdf"
    assert store.objects[done.pdf_url][0].startswith(b"%PDF")

    pages = queries.get_pages(order.id)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert all(p.status == "complete" and p.image_url for p in pages)
    assert [p.seed for p in pages] == [page_seed(order.id, n) for n in (1, 2, 3)]
    assert "BODY POSE FOR THIS PAGE: Maya explores spot 2 with Biscuit." in pages[1].full_prompt

    # every page is an edit of the selected preview
    assert [c[0] for c in fake_openai.image_calls] == ["edit"] * 3
    assert all(ref[1] == png_bytes() for ref in fake_openai.edit_references)
    assert fake_openai.calls["character_manifest"] == 1
    assert fake_openai.calls["page_contexts"] == 1

def test_rerun_is_a_no_op(pipeline, store, cfg, fake_openai):
    order = make_paid_order(store)
    first = _generate(order.id, pipeline, cfg)
    calls = (len(fake_openai.image_calls), dict(fake_openai.calls))

    second = _generate(order.id, pipeline, cfg)
    assert second["pdf_url"] == first["pdf_url"]
    assert (len(fake_openai.image_calls), fake_openai.calls) == calls

def test_unpaid_order_is_skipped(pipeline, cfg, fake_openai):
    order = queries.create_order({"description": "x"})
    out = _generate(order.id, pipeline, cfg)
    assert out["skipped"] is True
    assert fake_openai.calls == {}

def test_sleeps_between_pages_resume_from_checkpoints(cfg, store, fake_openai, sent_events):
    sleepy = replace(cfg, page_sleep_seconds=30)
    pipe = build_pipeline(sleepy, store=store)
    order = make_paid_order(store)
    now = [1000.0]
    deliveries = 0
    result = None

    while result is None:
        deliveries += 1
        steps = StepRunner(
            run_key(order.id),
            sleepy,
            scheduler=events.continuation(events.GENERATE_BOOK, order.id, cfg=sleepy),
            clock=lambda: now[0],
        )
        try:
            result = generate_book(order.id, steps, pipe)
        except Suspended as s:
            assert s.resume_in == pytest.approx(30)
            now[0] += 31

    # two waits between three pages
    assert deliveries == 3
    assert [e["delay"] for e in sent_events.of(events.GENERATE_BOOK)] == [pytest.approx(30)] * 2
    assert len(fake_openai.image_calls) == 3
    assert fake_openai.calls["character_manifest"] == 1
    assert queries.get_order(order.id).status == "complete"

def test_hard_failure_then_operator_resume(pipeline, store, cfg, fake_openai, sent_events):
    order = make_paid_order(store)
    fake_openai.scores = [PASS_SCORES] + [COLORED_SCORES] * 3

    with pytest.raises(QualityHardFailure):
        _generate(order.id, pipeline, cfg)

    failed = queries.get_order(order.id)
    assert failed.status == "failed"
    assert "page 2" in failed.error
    statuses = [p.status for p in queries.get_pages(order.id)]
    assert statuses == ["complete", "failed", "pending"]

    # failed orders wait for an operator
    assert _generate(order.id, pipeline, cfg)["skipped"] is True

    out = resume_order(order.id)
    assert out["pages_reset"] == [2]
    assert queries.get_order(order.id).status == "paid"
    assert sent_events.of(events.GENERATE_BOOK)[-1]["id"] == order.id

    rendered_before = len(fake_openai.image_calls)
    result = _generate(order.id, pipeline, cfg)
    assert result["status"] == "complete"
    # page 1 is not rendered again
    assert len(fake_openai.image_calls) - rendered_before == 2
    assert fake_openai.calls["character_manifest"] == 1
    assert all(p.status == "complete" for p in queries.get_pages(order.id))

def test_resume_resends_trigger_for_stalled_order(pipeline, store, cfg, sent_events):
    # paid, but the webhook's trigger never reached the queue
    order = make_paid_order(store)
    out = resume_order(order.id)
    assert out == {"order_id": order.id, "status": "paid", "pages_reset": []}
    assert [e["id"] for e in sent_events.of(events.GENERATE_BOOK)] == [order.id]
    assert queries.get_order(order.id).status == "paid"

    assert _generate(order.id, pipeline, cfg)["status"] == "complete"

def test_resume_rejects_unpaid_and_complete_orders(pipeline, store, cfg, sent_events):
    unpaid = queries.create_order({"description": "x"})
    done = make_paid_order(store)
    _generate(done.id, pipeline, cfg)
    for order_id in (unpaid.id, done.id):
        with pytest.raises(HTTPException) as exc:
            resume_order(order_id)
        assert exc.value.status_code == 409
    assert sent_events.of(events.GENERATE_BOOK) == []

def test_assembly_refuses_unfinished_pages(pipeline, store, cfg):
    order = make_paid_order(store)
    _generate(order.id, pipeline, cfg)
    second = queries.get_pages(order.id)[1]
    assert queries.reset_page_for_regen(second.id)

    with pytest.raises(NonRetriableError) as exc:
        assemble_book(order.id, pipeline)
    assert "[2]" in str(exc.value)
