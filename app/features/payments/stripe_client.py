# app/features/payments/stripe_client.py
from __future__ import annotations

from typing import Dict, Optional

import stripe

from app.config import Config
from app.logger import get_logger

log = get_logger(__name__)

def _configure(cfg: Config) -> None:
    if not cfg.stripe_secret_key:
        raise RuntimeError("STRIPE_SECRET_KEY not configured")
    stripe.api_key = cfg.stripe_secret_key

def create_checkout_session(
    cfg: Config,
    *,
    amount_cents: int,
    product_name: str,
    metadata: Dict[str, str],
    success_path: str,
    cancel_path: str,
    customer_email: Optional[str] = None,
):
    """One-off payment session for a single line item. Metadata carries identifiers only."""
    _configure(cfg)
    params = {
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": cfg.currency,
                "product_data": {"name": product_name},
                "unit_amount": amount_cents,
            },
            "quantity": 1,
        }],
        "metadata": metadata,
        "success_url": f"{cfg.site_url}{success_path}",
        "cancel_url": f"{cfg.site_url}{cancel_path}",
    }
    if customer_email:
        params["customer_email"] = customer_email
    session = stripe.checkout.Session.create(**params)
    log.info(f"checkout session {session.id} created: {product_name} {amount_cents} {cfg.currency}")
    return session

def construct_event(cfg: Config, payload: bytes, signature: str):
    """Verify the gateway signature and parse the event. Raises on a bad signature."""
    return stripe.Webhook.construct_event(payload, signature, cfg.stripe_webhook_secret)
