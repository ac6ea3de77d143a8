# app/features/orders/regenerate.py
"""
regenerate-page controller: one paid re-roll of a single page.

The credit was debited by the request handler before the trigger was sent.
A hard quality failure refunds it (step `refund-credit`) before the error surfaces.
"""
from __future__ import annotations

import random
from typing import Any, Dict

from app.features.credits.ledger import credit
from app.features.pages.synthesis import QualityHardFailure
from app.lib import queries
from app.lib.seed import SEED_MASK
from app.lib.steps import NonRetriableError, StepRunner
from app.logger import get_logger
from app.pipeline import Pipeline

log = get_logger(__name__)

def run_key(page_id: str, request_id: str) -> str:
    return f"regenerate-page:{page_id}:{request_id}"

def load_page_context(page_id: str, order_id: str) -> Dict[str, Any]:
    order = queries.get_order(order_id)
    if order is None or not order.preview_image_url:
        raise NonRetriableError(f"order {order_id} has no preview image; cannot regenerate")
    page = queries.get_page(page_id)
    if page is None or page.order_id != order_id:
        raise NonRetriableError(f"page {page_id} not found on order {order_id}")
    return {
        "page_number": page.page_number,
        "prompt": page.full_prompt,
        # fresh seed per request, recorded with the step so replays reuse it
        "seed": random.randint(0, SEED_MASK),
        "reference_url": order.preview_image_url,
    }

def regenerate_page(page_id: str, payload: Dict[str, Any], steps: StepRunner, pipeline: Pipeline) -> Dict[str, Any]:
    order_id = payload.get("order_id")
    email = payload.get("email")
    if not order_id or not email:
        raise NonRetriableError("regenerate-page needs order_id and email")

    ctx = steps.run("load-page-context", lambda: load_page_context(page_id, order_id))
    n = ctx["page_number"]
    try:
        result = pipeline.synthesizer.run(
            order_id=order_id,
            page_number=n,
            prompt=ctx["prompt"],
            seed=ctx["seed"],
            reference_url=ctx["reference_url"],
            checkpoint=steps.run,
            step_prefix=f"regenerate-page-{n}",
        )
    except QualityHardFailure as e:
        steps.run("refund-credit", lambda: credit(
            email,
            pipeline.cfg.regenerate_cost_credits,
            "refund",
            reference_id=page_id,
            description=f"Credit refunded: page {n} regeneration produced colored output after all retries",
        ))
        steps.run(f"mark-page-{n}-failed", lambda: queries.mark_page_failed(page_id, str(e)))
        log.error(f"[{order_id}] page {n} regeneration failed hard; credit refunded to {email}")
        raise

    steps.run("save-page", lambda: queries.update_page_image(page_id, result.image_url, result.provider_id))
    log.info(f"[{order_id}] page {n} regenerated in {result.attempts} attempt(s)")
    return {"page_id": page_id, "status": "complete", "image_url": result.image_url}
