# app/features/credits/service.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException
from sqlalchemy import update

from app.config import Config
from app.features.payments.stripe_client import create_checkout_session
from app.lib import queries
from app.lib.db import get_db_session
from app.lib.models import PendingCreditPurchase
from app.lib.pricing import credit_pack_price_cents
from app.lib.steps import NonRetriableError, StepRunner
from app.logger import get_logger
from .ledger import credit, normalize_email

log = get_logger(__name__)

# -------------------------------------------------------------------
# Checkout (request handler side)
# -------------------------------------------------------------------

def start_credit_checkout(cfg: Config, *, email: str, credits: int) -> Dict[str, Any]:
    try:
        amount = credit_pack_price_cents(cfg, credits)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    email = normalize_email(email)
    pending = queries.create_pending_credit_purchase(email=email, credits=credits, amount_cents=amount)
    session = create_checkout_session(
        cfg,
        amount_cents=amount,
        product_name=f"{credits} coloring book credits",
        metadata={"type": "credit_purchase", "pending_id": pending.id},
        success_path="/library/credits?purchased=1",
        cancel_path="/library/credits",
        customer_email=email,
    )
    queries.link_pending_credit_session(pending.id, session.id)
    return {"pending_id": pending.id, "session_id": session.id, "checkout_url": session.url}

# -------------------------------------------------------------------
# Controller: grant-credits
# -------------------------------------------------------------------

def _grant(pending_id: str) -> Dict[str, Any]:
    with get_db_session() as s:
        pending = s.get(PendingCreditPurchase, pending_id)
        if pending is None:
            raise NonRetriableError(f"no pending credit purchase {pending_id}")
        res = s.execute(
            update(PendingCreditPurchase)
            .where(PendingCreditPurchase.id == pending_id, PendingCreditPurchase.status == "pending")
            .values(status="complete")
        )
        if res.rowcount != 1:
            log.info(f"[{pending_id}] credit purchase already complete; skipping")
            return {"granted": 0}
        balance = credit(
            pending.email,
            pending.credits,
            "purchase",
            reference_id=pending.stripe_checkout_session_id or pending_id,
            description=f"Purchased {pending.credits} credits",
            session=s,
        )
        return {"granted": pending.credits, "balance": balance}

def grant_credits(pending_id: str, steps: StepRunner) -> Dict[str, Any]:
    """Award a paid credit pack exactly once (pending -> complete and the credit share one transaction)."""
    return steps.run("grant-credits", lambda: _grant(pending_id))
