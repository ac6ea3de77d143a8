# app/features/library/service.py
"""Mix-and-match library: buy a book assembled from pages shared by other customers."""
from __future__ import annotations

from typing import List

from fastapi import HTTPException

from app.features.credits.ledger import InsufficientCredits, credit, normalize_email, require_debit
from app.features.payments.stripe_client import create_checkout_session
from app.lib import events, queries
from app.lib.models import new_id
from app.lib.pricing import library_price_cents
from app.logger import get_logger
from app.pipeline import Pipeline
from .schemas import LibraryCheckoutResponse, LibrarySelection, PurchaseStatusResponse, RedeemResponse

log = get_logger(__name__)

def validate_selection(page_ids: List[str]) -> List[str]:
    """Every page must exist, be complete with an image and come from an order shared to the library."""
    found = queries.get_library_pages(page_ids)
    by_id = {page.id: (page, opt_in) for page, opt_in in found}
    bad = [
        pid for pid in page_ids
        if pid not in by_id
        or not by_id[pid][1]
        or by_id[pid][0].status != "complete"
        or not by_id[pid][0].image_url
    ]
    if bad:
        raise HTTPException(status_code=400, detail=f"pages not available in the library: {', '.join(bad)}")
    return list(page_ids)

def start_library_checkout(pipeline: Pipeline, sel: LibrarySelection) -> LibraryCheckoutResponse:
    cfg = pipeline.cfg
    page_ids = validate_selection(sel.page_ids)
    amount = library_price_cents(cfg, len(page_ids))
    email = normalize_email(sel.email)
    purchase = queries.create_library_purchase(
        selected_page_ids=page_ids,
        customer_email=email,
        status="awaiting_payment",
        amount_cents=amount,
    )
    session = create_checkout_session(
        cfg,
        amount_cents=amount,
        product_name=f"Library coloring book ({len(page_ids)} pages)",
        metadata={"type": "library_purchase", "purchase_id": purchase.id},
        success_path=f"/library/download/{purchase.id}",
        cancel_path="/library/checkout",
        customer_email=email,
    )
    queries.link_library_purchase_session(purchase.id, session.id)
    log.info(f"[{purchase.id}] library checkout: {len(page_ids)} pages, {amount} cents")
    return LibraryCheckoutResponse(
        purchase_id=purchase.id,
        session_id=session.id,
        checkout_url=session.url,
        amount_cents=amount,
    )

def redeem_with_credits(pipeline: Pipeline, sel: LibrarySelection) -> RedeemResponse:
    """One credit per page, debited before the purchase row exists."""
    cfg = pipeline.cfg
    page_ids = validate_selection(sel.page_ids)
    email = normalize_email(sel.email)
    cost = len(page_ids)
    purchase_id = new_id()

    try:
        result = require_debit(email, cost, reason="spend", reference_id=purchase_id, description=f"Library book ({cost} pages)")
    except InsufficientCredits as e:
        raise HTTPException(status_code=402, detail=str(e))

    try:
        queries.create_library_purchase(
            purchase_id=purchase_id,
            selected_page_ids=page_ids,
            customer_email=email,
            status="generating",
            credits_used=cost,
        )
    except Exception:
        log.exception(f"[{purchase_id}] purchase insert failed after debit; refunding")
        credit(email, cost, "refund", reference_id=purchase_id, description="Library redemption could not be recorded")
        raise

    events.send_event(events.ASSEMBLE_LIBRARY_BOOK, purchase_id, cfg=cfg)
    log.info(f"[{purchase_id}] redeemed {cost} credits for {email}")
    return RedeemResponse(purchase_id=purchase_id, credits_used=cost, balance=result.balance)

def get_purchase_status(pipeline: Pipeline, purchase_id: str) -> PurchaseStatusResponse:
    purchase = queries.get_library_purchase(purchase_id)
    if purchase is None:
        raise HTTPException(status_code=404, detail="purchase not found")
    return PurchaseStatusResponse(
        purchase_id=purchase.id,
        status=purchase.status,
        page_count=len(purchase.selected_page_ids or []),
        pdf_url=pipeline.store.url_for(purchase.pdf_url) if purchase.pdf_url else None,
        error=purchase.error,
    )
