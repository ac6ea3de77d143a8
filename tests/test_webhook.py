# tests/test_webhook.py
import json

import pytest
import stripe

from app.features.credits.ledger import get_balance
from app.features.payments import webhook
from app.features.payments.webhook import WebhookSignatureError, handle_stripe_webhook
from app.lib import events, queries
from conftest import make_paid_order, png_bytes


@pytest.fixture(autouse=True)
def verified(monkeypatch):
    """Signature check passes; the payload is the event itself."""
    monkeypatch.setattr(webhook, "construct_event", lambda cfg, payload, sig: json.loads(payload))

def _event(event_id, metadata, *, session_id="cs_1", email="payer@example.com", amount=1200, kind="checkout.session.completed"):
    return json.dumps({
        "id": event_id,
        "type": kind,
        "data": {"object": {
            "id": session_id,
            "amount_total": amount,
            "currency": "usd",
            "customer_details": {"email": email},
            "metadata": metadata,
        }},
    }).encode()

def _awaiting_order(store):
    order = queries.create_order({"description": "A dragon who bakes"})
    preview = store.put(f"previews/{order.id}/p.png", png_bytes(), "image/png")
    queries.set_order_previews(order.id, [{"url": preview, "seed": 3}])
    queries.select_order_preview(order.id, preview, 3)
    return order

# -------- Verification --------
def test_missing_signature(cfg):
    with pytest.raises(WebhookSignatureError):
        handle_stripe_webhook(cfg, b"{}", None)

def test_bad_signature(cfg, monkeypatch):
    def reject(cfg, payload, sig):
        raise stripe.SignatureVerificationError("bad signature", sig)
    monkeypatch.setattr(webhook, "construct_event", reject)
    with pytest.raises(WebhookSignatureError):
        handle_stripe_webhook(cfg, b"{}", "t=1,v1=abc")

# -------- Orders --------
def test_order_paid_once(cfg, store, sent_events):
    order = _awaiting_order(store)
    payload = _event("evt_1", {"order_id": order.id})

    out = handle_stripe_webhook(cfg, payload, "sig")
    assert out == {"received": True, "order_id": order.id}
    paid = queries.get_order(order.id)
    assert paid.status == "paid"
    assert paid.customer_email == "payer@example.com"
    assert paid.stripe_checkout_session_id == "cs_1"
    assert get_balance("payer@example.com") == cfg.purchase_bonus_credits
    assert [e["id"] for e in sent_events.of(events.GENERATE_BOOK)] == [order.id]

    # replayed delivery: dedup gate
    assert handle_stripe_webhook(cfg, payload, "sig") == {"received": True, "duplicate": True}
    # same session under a new event id: conditional transition
    again = handle_stripe_webhook(cfg, _event("evt_2", {"order_id": order.id}), "sig")
    assert again["skipped"] is True

    assert get_balance("payer@example.com") == cfg.purchase_bonus_credits
    assert len(sent_events.of(events.GENERATE_BOOK)) == 1

def test_payment_first_creates_order(cfg, sent_events):
    meta = {"user_input": json.dumps({"description": "A robot gardener"}), "theme": "space garden", "price_tier": "premium"}
    out = handle_stripe_webhook(cfg, _event("evt_pf", meta, session_id="cs_pf"), "sig")
    order = queries.get_order(out["order_id"])
    assert order.status == "paid"
    assert order.price_tier == "premium"
    assert order.user_input == {"description": "A robot gardener", "theme": "space garden"}

    dup = handle_stripe_webhook(cfg, _event("evt_pf2", meta, session_id="cs_pf"), "sig")
    assert dup["skipped"] is True
    assert len(sent_events.of(events.GENERATE_BOOK)) == 1

def test_bonus_credit_failure_still_starts_the_book(cfg, store, sent_events, monkeypatch):
    def ledger_down(*args, **kwargs):
        raise RuntimeError("ledger unavailable")
    monkeypatch.setattr(webhook, "credit", ledger_down)
    order = _awaiting_order(store)

    out = handle_stripe_webhook(cfg, _event("evt_bonus", {"order_id": order.id}), "sig")
    assert out == {"received": True, "order_id": order.id}
    assert queries.get_order(order.id).status == "paid"
    assert [e["id"] for e in sent_events.of(events.GENERATE_BOOK)] == [order.id]

@pytest.mark.parametrize("raw", ["42", json.dumps("a knight who knits"), json.dumps(["a", "list"])])
def test_payment_first_accepts_non_object_input(cfg, sent_events, raw):
    meta = {"user_input": raw, "theme": "space"}
    out = handle_stripe_webhook(cfg, _event("evt_raw", meta, session_id="cs_raw"), "sig")
    order = queries.get_order(out["order_id"])
    assert order.status == "paid"
    assert order.user_input == {"description": raw, "theme": "space"}
    assert [e["id"] for e in sent_events.of(events.GENERATE_BOOK)] == [order.id]

def test_ignored_event_types(cfg, sent_events):
    out = handle_stripe_webhook(cfg, _event("evt_x", {}, kind="payment_intent.created"), "sig")
    assert out == {"received": True}
    assert sent_events.sent == []

def test_processing_error_is_acknowledged(cfg):
    out = handle_stripe_webhook(cfg, _event("evt_err", {"type": "library_purchase"}), "sig")
    assert out["received"] is True
    assert "purchase_id" in out["error"]

# -------- Credits / library --------
def test_credit_purchase_sends_grant(cfg, sent_events):
    out = handle_stripe_webhook(cfg, _event("evt_c", {"type": "credit_purchase", "pending_id": "pend1"}), "sig")
    assert out["pending_id"] == "pend1"
    assert sent_events.of(events.GRANT_CREDITS)[0]["id"] == "pend1"

def test_library_purchase_pays_creators(cfg, store, sent_events):
    creator = make_paid_order(store, email="creator@example.com")
    page_rows = [
        {"page_number": n, "seed": n, "scene_description": "s", "full_prompt": "p"} for n in (1, 2)
    ]
    manifest = queries.insert_manifest(creator.id, {"character_name": "Maya", "character_type": "human", "theme": "jungle"})
    pages = queries.insert_pages(creator.id, manifest.id, page_rows)

    purchase = queries.create_library_purchase(
        selected_page_ids=[p.id for p in pages],
        customer_email="buyer@example.com",
        status="awaiting_payment",
        amount_cents=500,
    )
    queries.link_library_purchase_session(purchase.id, "cs_lib")
    payload = _event("evt_lib", {"type": "library_purchase", "purchase_id": purchase.id}, session_id="cs_lib")

    out = handle_stripe_webhook(cfg, payload, "sig")
    assert out["purchase_id"] == purchase.id
    assert queries.get_library_purchase(purchase.id).status == "paid"
    assert get_balance("creator@example.com") == 2
    assert sent_events.of(events.ASSEMBLE_LIBRARY_BOOK)[0]["id"] == purchase.id

    replay = handle_stripe_webhook(cfg, _event("evt_lib2", {"type": "library_purchase", "purchase_id": purchase.id}, session_id="cs_lib"), "sig")
    assert replay["skipped"] is True
    assert get_balance("creator@example.com") == 2
