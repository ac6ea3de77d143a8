# app/features/payments/webhook.py
"""
Payment gateway webhook.

After signature verification the event id passes through the dedup gate
(insert-or-ignore), so a replayed delivery has no further effect. Every
branch below only writes through conditional updates and sends triggers that
carry identifiers; amounts and emails are read from our own rows or from the
verified session, never from free-form metadata.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

import stripe

from app.config import Config
from app.features.credits.ledger import credit
from app.lib import events, queries
from app.logger import get_logger
from .stripe_client import construct_event

log = get_logger(__name__)


class WebhookSignatureError(Exception):
    """Missing or invalid gateway signature."""


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value

# -------------------------------------------------------------------
# Branches
# -------------------------------------------------------------------

def _library_purchase(cfg: Config, session: Any, metadata: Dict[str, Any]) -> Dict[str, Any]:
    session_id = _get(session, "id")
    purchase_id = metadata.get("purchase_id")
    if not purchase_id:
        raise ValueError(f"missing purchase_id in session {session_id}")
    purchase = queries.get_library_purchase_by_session(session_id)
    if purchase is None or purchase.status != "awaiting_payment":
        log.info(f"[{purchase_id}] library purchase already processed; skipping")
        return {"skipped": True}
    if purchase.id != purchase_id:
        raise ValueError(f"session mismatch for purchase {purchase_id}: session {session_id} belongs to {purchase.id}")
    if not queries.transition_purchase(purchase.id, ("awaiting_payment",), "paid"):
        log.info(f"[{purchase_id}] library purchase paid concurrently; skipping")
        return {"skipped": True}

    for page_id, creator in queries.get_creator_emails_for_pages(purchase.selected_page_ids):
        try:
            credit(
                creator,
                1,
                "creator_earn",
                reference_id=purchase.id,
                description=f"Page {page_id} downloaded in library purchase {purchase.id}",
            )
        except Exception as e:
            # earnings never block assembly
            log.exception(f"[{purchase.id}] creator credit for page {page_id} failed: {e}")
    events.send_event(events.ASSEMBLE_LIBRARY_BOOK, purchase.id, cfg=cfg)
    log.info(f"[{purchase.id}] library purchase paid; assembly triggered")
    return {"purchase_id": purchase.id}

def _credit_purchase(cfg: Config, session: Any, metadata: Dict[str, Any]) -> Dict[str, Any]:
    pending_id = metadata.get("pending_id")
    if not pending_id:
        raise ValueError(f"missing pending_id in session {_get(session, 'id')}")
    events.send_event(events.GRANT_CREDITS, pending_id, cfg=cfg)
    log.info(f"[{pending_id}] credit purchase queued")
    return {"pending_id": pending_id}

def _order(cfg: Config, session: Any, metadata: Dict[str, Any]) -> Dict[str, Any]:
    session_id = _get(session, "id")
    email = _get(_get(session, "customer_details"), "email") or _get(session, "customer_email") or ""
    amount = int(_get(session, "amount_total", 0))
    currency = _get(session, "currency", cfg.currency)
    order_id = metadata.get("order_id")

    if order_id:
        if not queries.mark_order_paid(order_id, session_id=session_id, email=email, amount_cents=amount, currency=currency):
            log.info(f"[{order_id}] already processed for session {session_id}; skipping")
            return {"order_id": order_id, "skipped": True}
        if email:
            try:
                credit(
                    email,
                    cfg.purchase_bonus_credits,
                    "purchase_bonus",
                    reference_id=order_id,
                    description=f"{cfg.purchase_bonus_credits} regeneration credits included with order {order_id}",
                )
            except Exception as e:
                # the bonus never blocks book generation
                log.exception(f"[{order_id}] purchase bonus credit failed: {e}")
    else:
        # payment-first: the session carries the request itself
        raw = metadata.get("user_input")
        if not raw:
            raise ValueError(f"checkout session {session_id} has neither order_id nor user_input metadata")
        try:
            user_input = json.loads(raw)
        except (TypeError, ValueError):
            user_input = None
        if not isinstance(user_input, dict):
            user_input = {"description": raw}
        if metadata.get("character_name"):
            user_input.setdefault("character_name", metadata["character_name"])
        if metadata.get("theme"):
            user_input.setdefault("theme", metadata["theme"])
        order_id = queries.create_paid_order_from_session(
            session_id=session_id,
            email=email,
            amount_cents=amount,
            currency=currency,
            user_input=user_input,
            price_tier=metadata.get("price_tier") or "standard",
            preview_image_url=metadata.get("preview_image_url"),
        )
        if order_id is None:
            log.info(f"order for session {session_id} already exists; skipping")
            return {"skipped": True}

    events.send_event(events.GENERATE_BOOK, order_id, cfg=cfg)
    log.info(f"[{order_id}] paid; generate-book sent")
    return {"order_id": order_id}

# -------------------------------------------------------------------
# Entry point
# -------------------------------------------------------------------

def handle_stripe_webhook(cfg: Config, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    if not signature:
        raise WebhookSignatureError("missing stripe-signature header")
    try:
        event = construct_event(cfg, payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        log.error(f"stripe webhook verification failed: {e}")
        raise WebhookSignatureError(str(e)) from e

    event_id, event_type = event["id"], event["type"]
    try:
        if not queries.record_webhook_event(event_id, event_type):
            log.info(f"stripe event {event_id} already processed; skipping")
            return {"received": True, "duplicate": True}

        if event_type != "checkout.session.completed":
            log.debug(f"stripe event {event_id} ({event_type}) ignored")
            return {"received": True}

        session = event["data"]["object"]
        metadata = dict(_get(session, "metadata", {}) or {})
        kind = metadata.get("type")
        if kind == "library_purchase":
            result = _library_purchase(cfg, session, metadata)
        elif kind == "credit_purchase":
            result = _credit_purchase(cfg, session, metadata)
        else:
            result = _order(cfg, session, metadata)
        return {"received": True, **result}
    except Exception as e:
        # the gateway must not redeliver after the dedup gate; log and ack
        log.exception(f"stripe event {event_id} processing error: {e}")
        return {"received": True, "error": str(e)}
