# tests/test_regenerate.py
from dataclasses import replace

import pytest
from fastapi import HTTPException

from app.features.credits.ledger import credit, get_balance
from app.features.orders.controller import generate_book
from app.features.orders.controller import run_key as book_key
from app.features.orders.regenerate import regenerate_page, run_key
from app.features.orders.service import request_regeneration
from app.features.pages.synthesis import QualityHardFailure
from app.lib import events, queries
from app.lib.steps import StepRunner, Suspended
from app.pipeline import build_pipeline
from conftest import COLORED_SCORES, drive, make_paid_order

EMAIL = "parent@example.com"


@pytest.fixture
def book(pipeline, store, cfg):
    order = make_paid_order(store, email=EMAIL)
    drive(lambda steps: generate_book(order.id, steps, pipeline), book_key(order.id), cfg)
    return order.id, queries.get_pages(order.id)[1]

def _run(sent, pipeline, cfg):
    payload = sent["payload"]
    return drive(
        lambda steps: regenerate_page(sent["id"], payload, steps, pipeline),
        run_key(sent["id"], payload["request_id"]),
        cfg,
    )

def test_regenerate_spends_a_credit_and_rerenders(pipeline, cfg, book, sent_events, fake_openai):
    order_id, page = book
    credit(EMAIL, 2, "purchase")

    out = request_regeneration(pipeline, order_id, page.id)
    assert out.balance == 2 - cfg.regenerate_cost_credits
    assert queries.get_page(page.id).status == "pending"
    sent = sent_events.of(events.REGENERATE_PAGE)[0]
    assert sent["id"] == page.id
    assert sent["payload"] == {"order_id": order_id, "email": EMAIL, "request_id": out.request_id}

    rendered = len(fake_openai.image_calls)
    result = _run(sent, pipeline, cfg)
    assert result["status"] == "complete"
    fresh = queries.get_page(page.id)
    assert fresh.status == "complete"
    assert fresh.image_url == result["image_url"]
    assert len(fake_openai.image_calls) == rendered + 1

    # a redelivered trigger replays the same run
    assert _run(sent, pipeline, cfg) == result
    assert len(fake_openai.image_calls) == rendered + 1

def test_regenerate_needs_credits(pipeline, book, sent_events):
    order_id, page = book
    with pytest.raises(HTTPException) as exc:
        request_regeneration(pipeline, order_id, page.id)
    assert exc.value.status_code == 402
    assert queries.get_page(page.id).status == "complete"
    assert sent_events.sent == []

def test_one_regeneration_at_a_time(pipeline, book):
    order_id, page = book
    credit(EMAIL, 3, "purchase")
    request_regeneration(pipeline, order_id, page.id)
    with pytest.raises(HTTPException) as exc:
        request_regeneration(pipeline, order_id, page.id)
    assert exc.value.status_code == 409
    assert get_balance(EMAIL) == 2

def test_page_must_belong_to_order(pipeline, book, store):
    _, page = book
    other = make_paid_order(store, email="other@example.com")
    with pytest.raises(HTTPException) as exc:
        request_regeneration(pipeline, other.id, page.id)
    assert exc.value.status_code == 404

def test_hard_failure_refunds(pipeline, cfg, book, sent_events, fake_openai):
    order_id, page = book
    credit(EMAIL, 1, "purchase")
    request_regeneration(pipeline, order_id, page.id)
    assert get_balance(EMAIL) == 0

    fake_openai.scores = [COLORED_SCORES] * (cfg.max_quality_retries + 1)
    with pytest.raises(QualityHardFailure):
        _run(sent_events.of(events.REGENERATE_PAGE)[0], pipeline, cfg)

    assert get_balance(EMAIL) == 1
    assert queries.get_page(page.id).status == "failed"

def test_no_regeneration_while_book_is_generating(cfg, store, sent_events):
    sleepy = replace(cfg, page_sleep_seconds=30)
    pipe = build_pipeline(sleepy, store=store)
    order = make_paid_order(store, email=EMAIL)
    with pytest.raises(Suspended):
        generate_book(order.id, StepRunner(book_key(order.id), sleepy, scheduler=lambda delay: None), pipe)

    first = queries.get_pages(order.id)[0]
    assert first.status == "complete"
    assert queries.get_order(order.id).status == "generating"

    credit(EMAIL, 2, "purchase")
    with pytest.raises(HTTPException) as exc:
        request_regeneration(pipe, order.id, first.id)
    assert exc.value.status_code == 409
    assert get_balance(EMAIL) == 2
    assert queries.get_page(first.id).status == "complete"
    assert sent_events.of(events.REGENERATE_PAGE) == []
