# app/features/library/controller.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.features.assembly.service import library_object_name
from app.lib import queries
from app.lib.steps import NonRetriableError, StepRunner, Suspended
from app.logger import get_logger
from app.pipeline import Pipeline

log = get_logger(__name__)

def run_key(purchase_id: str) -> str:
    return f"assemble-library-book:{purchase_id}"

def _mark_generating(purchase_id: str) -> Dict[str, Any]:
    purchase = queries.get_library_purchase(purchase_id)
    if purchase is None:
        raise NonRetriableError(f"library purchase {purchase_id} not found")
    if purchase.status in ("complete", "generating"):
        return {"status": purchase.status}
    if not queries.transition_purchase(purchase_id, ("paid",), "generating"):
        raise NonRetriableError(f"library purchase {purchase_id} is {purchase.status}; not ready to assemble")
    return {"status": "generating"}

def _fetch_purchase(purchase_id: str) -> Optional[Dict[str, Any]]:
    purchase = queries.get_library_purchase(purchase_id)
    if purchase is None:
        raise NonRetriableError(f"library purchase {purchase_id} not found")
    if purchase.status == "complete":
        return None
    return {"id": purchase.id, "selected_page_ids": list(purchase.selected_page_ids or [])}

def _fetch_page_images(purchase_id: str, page_ids: List[str]) -> List[str]:
    urls = [p.image_url for p in queries.get_pages_by_ids(page_ids) if p.status == "complete" and p.image_url]
    if not urls:
        raise NonRetriableError(f"no completed page images for purchase {purchase_id}")
    return urls

def assemble_library_book(purchase_id: str, steps: StepRunner, pipeline: Pipeline) -> Dict[str, Any]:
    try:
        steps.run("mark-generating", lambda: _mark_generating(purchase_id))
        purchase = steps.run("fetch-purchase", lambda: _fetch_purchase(purchase_id))
        if purchase is None:
            log.info(f"[{purchase_id}] library book already assembled")
            return {"purchase_id": purchase_id, "skipped": True}

        urls = steps.run("fetch-page-images", lambda: _fetch_page_images(purchase_id, purchase["selected_page_ids"]))
        pdf_url = steps.run("assemble-pdf", lambda: pipeline.assembly.assemble(
            urls, object_name=library_object_name(purchase_id), title=f"Library Book {purchase_id}",
        ))
        steps.run("mark-complete", lambda: queries.transition_purchase(
            purchase_id, ("generating",), "complete", pdf_url=pdf_url, error=None,
        ))
        log.info(f"[{purchase_id}] library book complete: {len(urls)} pages")
        return {"purchase_id": purchase_id, "pdf_url": pdf_url, "page_count": len(urls)}
    except Suspended:
        raise
    except Exception as e:
        log.exception(f"[{purchase_id}] library assembly failed: {e}")
        steps.run("mark-purchase-failed", lambda: queries.transition_purchase(
            purchase_id, ("paid", "generating"), "failed", error=str(e)[:2000],
        ))
        raise
