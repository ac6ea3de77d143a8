# app/features/orders/controller.py
"""
generate-book controller.

Runs top to bottom on every delivery of the trigger. Each side effect sits
behind a named step, so a replay after a crash or a sleep continuation skips
everything that already happened and resumes at the first unfinished step.

    generate-manifest -> set-generating -> get-pending-pages
    -> per page: synthesis sub-steps, generate-page-{n}, wait-after-page-{n}
    -> assemble-pdf -> mark-complete
"""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import ValidationError

from app.features.assembly.service import book_object_name
from app.features.manifest.schemas import CharacterManifest, OrderInput
from app.features.pages.prompt import compose_page_prompt
from app.features.pages.synthesis import QualityHardFailure, SynthesisResult
from app.lib import queries
from app.lib.seed import page_seed
from app.lib.steps import NonRetriableError, StepRunner, Suspended
from app.logger import get_logger
from app.pipeline import Pipeline

log = get_logger(__name__)

RUN_PREFIX = "generate-book"
ACTIVE_STATUSES = ("paid", "manifest_ready", "generating")

def run_key(order_id: str) -> str:
    return f"{RUN_PREFIX}:{order_id}"

# -------------------------------------------------------------------
# Steps
# -------------------------------------------------------------------

def parse_order_input(raw: Dict[str, Any]) -> OrderInput:
    try:
        return OrderInput.model_validate(raw or {})
    except ValidationError as e:
        raise NonRetriableError(f"invalid order input: {e}") from e

def prepare_book(order_id: str, pipeline: Pipeline) -> Dict[str, Any]:
    order = queries.get_order(order_id)
    if order is None:
        raise NonRetriableError(f"order {order_id} not found")
    if not order.preview_image_url:
        raise NonRetriableError(f"order {order_id} has no selected preview image")
    if order.status in ("manifest_ready", "generating", "complete"):
        log.info(f"[{order_id}] manifest stage already done (status={order.status})")
        return {"skipped": True}

    tier = order.price_tier or "standard"
    record = queries.get_manifest(order_id)
    if record is None:
        order_input = parse_order_input(order.user_input)
        manifest, raw = pipeline.manifest.generate(order_input, price_tier=tier)
        record = queries.insert_manifest(order_id, manifest.model_dump(), raw)
    manifest = CharacterManifest.model_validate(record.data)

    if not queries.get_pages(order_id):
        scenes = pipeline.scenes.generate(manifest, price_tier=tier)
        global_ctx = pipeline.context.global_context(manifest, price_tier=tier)
        contexts = pipeline.context.page_contexts(manifest, scenes, global_ctx, price_tier=tier)
        rows = [
            {
                "page_number": n,
                "seed": page_seed(order_id, n),
                "scene_description": scene,
                "full_prompt": compose_page_prompt(manifest, scene, ctx),
            }
            for n, (scene, ctx) in enumerate(zip(scenes, contexts), start=1)
        ]
        queries.insert_pages(order_id, record.id, rows)
        log.info(f"[{order_id}] {len(rows)} pages planned for {manifest.character_name}")

    queries.transition_order(order_id, ("paid",), "manifest_ready")
    return {"manifest_id": record.id, "character_name": manifest.character_name}

def set_generating(order_id: str) -> Dict[str, Any]:
    if not queries.transition_order(order_id, ("manifest_ready",), "generating"):
        order = queries.get_order(order_id)
        status = order.status if order else None
        if status not in ("generating", "complete"):
            raise NonRetriableError(f"order {order_id} cannot start generating from status {status}")
        return {"status": status}
    return {"status": "generating"}

def pending_pages(order_id: str) -> List[Dict[str, Any]]:
    return [
        {"id": p.id, "page_number": p.page_number, "seed": p.seed, "full_prompt": p.full_prompt}
        for p in queries.get_pending_pages(order_id)
    ]

def save_page(page_id: str, result: SynthesisResult) -> Dict[str, Any]:
    queries.update_page_image(page_id, result.image_url, result.provider_id)
    return {"image_url": result.image_url, "provider_id": result.provider_id, "attempts": result.attempts}

def assemble_book(order_id: str, pipeline: Pipeline) -> Dict[str, Any]:
    pages = queries.get_pages(order_id)
    unfinished = [p.page_number for p in pages if p.status != "complete" or not p.image_url]
    if unfinished:
        raise NonRetriableError(f"order {order_id} has unfinished pages {unfinished}; not assembling")
    urls = [p.image_url for p in pages]
    location = pipeline.assembly.assemble(urls, object_name=book_object_name(order_id), title=f"Coloring Book {order_id}")
    return {"pdf_url": location, "page_count": len(urls)}

def mark_complete(order_id: str, pdf_url: str) -> bool:
    return queries.transition_order(order_id, ("generating",), "complete", pdf_url=pdf_url, error=None)

def mark_failed(order_id: str, error: str) -> bool:
    return queries.transition_order(order_id, ACTIVE_STATUSES, "failed", error=error[:2000])

# -------------------------------------------------------------------
# Controller
# -------------------------------------------------------------------

def generate_book(order_id: str, steps: StepRunner, pipeline: Pipeline) -> Dict[str, Any]:
    order = queries.get_order(order_id)
    if order is None:
        raise NonRetriableError(f"order {order_id} not found")
    if order.status == "awaiting_payment":
        log.warning(f"[{order_id}] generate-book before payment; ignoring")
        return {"order_id": order_id, "status": order.status, "skipped": True}
    if order.status == "failed":
        log.info(f"[{order_id}] order is failed; resume it explicitly to retry")
        return {"order_id": order_id, "status": order.status, "skipped": True}
    if order.status == "complete":
        log.info(f"[{order_id}] already complete")
        return {"order_id": order_id, "status": order.status, "pdf_url": order.pdf_url}

    cfg = pipeline.cfg
    current: Dict[str, Any] = {}
    try:
        steps.run("generate-manifest", lambda: prepare_book(order_id, pipeline))
        steps.run("set-generating", lambda: set_generating(order_id))
        pages = steps.run("get-pending-pages", lambda: pending_pages(order_id))

        reference_url = queries.get_order(order_id).preview_image_url
        if not reference_url:
            raise NonRetriableError(f"order {order_id} has no selected preview image")

        for i, page in enumerate(pages):
            n = page["page_number"]
            current = page
            result = pipeline.synthesizer.run(
                order_id=order_id,
                page_number=n,
                prompt=page["full_prompt"],
                seed=page["seed"],
                reference_url=reference_url,
                checkpoint=steps.run,
            )
            steps.run(f"generate-page-{n}", lambda: save_page(page["id"], result))
            if i < len(pages) - 1:
                steps.sleep(f"wait-after-page-{n}", cfg.page_sleep_seconds)
        current = {}

        assembled = steps.run("assemble-pdf", lambda: assemble_book(order_id, pipeline))
        steps.run("mark-complete", lambda: mark_complete(order_id, assembled["pdf_url"]))
        log.info(f"[{order_id}] book complete: {assembled['page_count']} pages")
        return {"order_id": order_id, "status": "complete", "pdf_url": assembled["pdf_url"]}

    except Suspended:
        raise
    except Exception as e:
        if isinstance(e, QualityHardFailure) and current:
            page_id, n = current["id"], current["page_number"]
            steps.run(f"mark-page-{n}-failed", lambda: queries.mark_page_failed(page_id, str(e)))
        log.exception(f"[{order_id}] generate-book failed: {e}")
        steps.run("mark-order-failed", lambda: mark_failed(order_id, str(e)))
        raise
