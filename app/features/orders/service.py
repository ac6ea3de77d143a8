# app/features/orders/service.py
"""Request-side order operations. Thin: validate, write, enqueue."""
from __future__ import annotations

import random
from typing import Any, Dict, List

from fastapi import HTTPException

from app.features.credits.ledger import credit, debit
from app.features.pages.prompt import compose_preview_prompt
from app.features.payments.stripe_client import create_checkout_session
from app.lib import events, queries
from app.lib.models import Order, new_id
from app.lib.pricing import order_price_cents
from app.lib.seed import SEED_MASK
from app.logger import get_logger
from app.pipeline import Pipeline
from .schemas import (
    CheckoutResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderStatusResponse,
    PageOut,
    PreviewCandidate,
    PreviewsResponse,
    RegenerateResponse,
)

log = get_logger(__name__)

def _require_order(order_id: str) -> Order:
    order = queries.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="order not found")
    return order

def create_order(pipeline: Pipeline, req: CreateOrderRequest) -> CreateOrderResponse:
    user_input = req.model_dump(include={"description", "character_name", "theme"})
    order = queries.create_order(user_input, price_tier=req.price_tier)
    log.info(f"[{order.id}] order created ({req.price_tier})")
    return CreateOrderResponse(
        order_id=order.id,
        status=order.status,
        price_cents=order_price_cents(pipeline.cfg, req.price_tier),
    )

def generate_previews(pipeline: Pipeline, order_id: str) -> PreviewsResponse:
    """Character-only renders the customer picks from; the pick becomes every page's reference."""
    order = _require_order(order_id)
    if order.status != "awaiting_payment":
        raise HTTPException(status_code=409, detail="previews can only be generated before payment")

    ui = order.user_input or {}
    prompt = compose_preview_prompt(ui.get("description", ""), ui.get("character_name"), ui.get("theme"))
    candidates: List[Dict[str, Any]] = []
    for i in range(pipeline.cfg.preview_count):
        seed = random.randint(0, SEED_MASK)
        img = pipeline.images.generate(prompt, seed=seed)
        location = pipeline.store.put(f"previews/{order_id}/preview-{i}-seed-{seed}.png", img.data, img.content_type)
        candidates.append({"url": location, "seed": seed})
    if not queries.set_order_previews(order_id, candidates):
        raise HTTPException(status_code=409, detail="order left awaiting_payment")
    log.info(f"[{order_id}] {len(candidates)} preview candidates stored")
    return PreviewsResponse(
        order_id=order_id,
        candidates=[
            PreviewCandidate(index=i, url=pipeline.store.url_for(c["url"]), seed=c["seed"])
            for i, c in enumerate(candidates)
        ],
    )

def select_preview(order_id: str, index: int) -> Dict[str, Any]:
    order = _require_order(order_id)
    candidates = order.preview_candidates or []
    if index >= len(candidates):
        raise HTTPException(status_code=400, detail=f"no preview candidate {index}")
    chosen = candidates[index]
    if not queries.select_order_preview(order_id, chosen["url"], chosen["seed"]):
        raise HTTPException(status_code=409, detail="preview can only be changed before payment")
    return {"order_id": order_id, "preview_seed": chosen["seed"]}

def start_checkout(pipeline: Pipeline, order_id: str, email: str | None = None) -> CheckoutResponse:
    order = _require_order(order_id)
    if order.status != "awaiting_payment":
        raise HTTPException(status_code=409, detail="order already paid")
    if not order.preview_image_url:
        raise HTTPException(status_code=400, detail="select a preview before checkout")
    session = create_checkout_session(
        pipeline.cfg,
        amount_cents=order_price_cents(pipeline.cfg, order.price_tier),
        product_name=f"Custom coloring book ({order.price_tier})",
        metadata={"order_id": order_id, "price_tier": order.price_tier},
        success_path=f"/orders/{order_id}?paid=1",
        cancel_path=f"/orders/{order_id}",
        customer_email=email,
    )
    return CheckoutResponse(order_id=order_id, session_id=session.id, checkout_url=session.url)

def get_order_status(pipeline: Pipeline, order_id: str) -> OrderStatusResponse:
    order = _require_order(order_id)
    store = pipeline.store
    return OrderStatusResponse(
        order_id=order.id,
        status=order.status,
        price_tier=order.price_tier,
        preview_image_url=store.url_for(order.preview_image_url) if order.preview_image_url else None,
        pages=[
            PageOut(
                id=p.id,
                page_number=p.page_number,
                status=p.status,
                image_url=store.url_for(p.image_url) if p.image_url else None,
                error=p.error,
            )
            for p in queries.get_pages(order_id)
        ],
        pdf_url=store.url_for(order.pdf_url) if order.pdf_url else None,
        library_opt_in=order.library_opt_in,
        error=order.error,
    )

def set_library_flag(order_id: str, opt_in: bool) -> Dict[str, Any]:
    _require_order(order_id)
    queries.set_library_opt_in(order_id, opt_in)
    return {"order_id": order_id, "library_opt_in": opt_in}

def request_regeneration(pipeline: Pipeline, order_id: str, page_id: str) -> RegenerateResponse:
    cfg = pipeline.cfg
    order = _require_order(order_id)
    page = queries.get_page(page_id)
    if page is None or page.order_id != order_id:
        raise HTTPException(status_code=404, detail="page not found on this order")
    if not order.customer_email:
        raise HTTPException(status_code=400, detail="order has no customer email")
    if order.status != "complete":
        raise HTTPException(status_code=409, detail=f"order is {order.status}; pages can be regenerated once the book is complete")
    if page.status != "complete":
        raise HTTPException(status_code=409, detail=f"page is {page.status}; only complete pages can be regenerated")

    email = order.customer_email
    cost = cfg.regenerate_cost_credits
    result = debit(email, cost, "spend", reference_id=page_id, description=f"Regenerate page {page.page_number}")
    if not result.success:
        raise HTTPException(status_code=402, detail=f"insufficient credits (balance {result.balance})")

    if not queries.reset_page_for_regen(page_id):
        credit(email, cost, "refund", reference_id=page_id, description="Regeneration already in progress")
        raise HTTPException(status_code=409, detail="page is already being regenerated")

    request_id = new_id()
    events.send_event(
        events.REGENERATE_PAGE,
        page_id,
        {"order_id": order_id, "email": email, "request_id": request_id},
        cfg=cfg,
    )
    log.info(f"[{order_id}] page {page.page_number} regeneration queued ({request_id})")
    return RegenerateResponse(page_id=page_id, request_id=request_id, balance=result.balance)
