# app/features/admin/router.py
"""
Operator actions.

A failed order stays failed until someone resumes it here. Paid orders that
never got going (their trigger was lost) are nudged by re-sending the trigger;
the controller replays from its checkpoints.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from app.config import config
from app.features.orders.controller import ACTIVE_STATUSES, run_key
from app.lib import events, queries
from app.lib.steps import StepRunner
from app.logger import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

# checkpoints re-evaluated on resume; completed pages keep theirs
RESUME_FORGET = ("mark-order-failed", "generate-manifest", "set-generating", "get-pending-pages")


def resume_order(order_id: str) -> Dict[str, Any]:
    order = queries.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="order not found")
    if order.status in ACTIVE_STATUSES:
        events.send_event(events.GENERATE_BOOK, order_id, cfg=config)
        log.info(f"[{order_id}] generate-book re-sent by operator (status={order.status})")
        return {"order_id": order_id, "status": order.status, "pages_reset": []}
    if order.status != "failed":
        raise HTTPException(status_code=409, detail=f"order is {order.status}; nothing to resume")

    # the manifest step reuses any persisted manifest and pages
    if not queries.transition_order(order_id, ("failed",), "paid", error=None):
        raise HTTPException(status_code=409, detail="order changed status concurrently")

    steps = StepRunner(run_key(order_id), config)
    for name in RESUME_FORGET:
        steps.forget(name)

    reset = []
    for page in queries.get_pages(order_id):
        if page.status != "failed":
            continue
        queries.reset_failed_page(page.id)
        n = page.page_number
        steps.forget(f"generate-page-{n}")
        steps.forget(f"mark-page-{n}-failed")
        steps.forget_prefix(f"generate-page-{n}:")
        reset.append(n)

    events.send_event(events.GENERATE_BOOK, order_id, cfg=config)
    log.info(f"[{order_id}] resumed by operator; pages reset: {reset}")
    return {"order_id": order_id, "status": "paid", "pages_reset": reset}


@router.post("/orders/{order_id}/resume")
def resume(order_id: str) -> dict:
    return resume_order(order_id)
