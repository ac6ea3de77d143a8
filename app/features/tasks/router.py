# app/features/tasks/router.py
"""
Worker endpoint for Cloud Tasks deliveries.

Each event maps to one controller. The controller runs under a StepRunner
keyed by the event's run key, with a continuation scheduler that re-sends the
same trigger when the run sleeps.

Response codes drive the queue's redelivery:
  200 done (or failed permanently), 202 suspended, 500 retry.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.features.credits.service import grant_credits
from app.features.library import controller as library_controller
from app.features.orders import controller as orders_controller
from app.features.orders import regenerate as regenerate_controller
from app.lib import events
from app.lib.steps import NonRetriableError, StepRunner, Suspended
from app.logger import get_logger
from app.pipeline import Pipeline, get_pipeline

log = get_logger(__name__)

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])

Handler = Callable[[StepRunner], Dict[str, Any]]


def grant_run_key(pending_id: str) -> str:
    return f"grant-credits:{pending_id}"


def resolve(event: str, resource_id: str, payload: Dict[str, Any], pipeline: Pipeline) -> Tuple[str, Handler]:
    """(run key, controller bound to its arguments) for one delivery."""
    if event == events.GENERATE_BOOK:
        return (
            orders_controller.run_key(resource_id),
            lambda steps: orders_controller.generate_book(resource_id, steps, pipeline),
        )
    if event == events.ASSEMBLE_LIBRARY_BOOK:
        return (
            library_controller.run_key(resource_id),
            lambda steps: library_controller.assemble_library_book(resource_id, steps, pipeline),
        )
    if event == events.GRANT_CREDITS:
        return grant_run_key(resource_id), lambda steps: grant_credits(resource_id, steps)
    if event == events.REGENERATE_PAGE:
        request_id = payload.get("request_id")
        if not request_id:
            raise NonRetriableError("regenerate-page needs a request_id")
        return (
            regenerate_controller.run_key(resource_id, request_id),
            lambda steps: regenerate_controller.regenerate_page(resource_id, payload, steps, pipeline),
        )
    raise HTTPException(status_code=404, detail=f"unknown event {event}")


def dispatch(event: str, resource_id: str, payload: Dict[str, Any], pipeline: Pipeline) -> JSONResponse:
    cfg = pipeline.cfg
    try:
        key, handler = resolve(event, resource_id, payload, pipeline)
        steps = StepRunner(key, cfg, scheduler=events.continuation(event, resource_id, payload, cfg=cfg))
        result = handler(steps)
    except Suspended as s:
        log.info(f"[{resource_id}] {event} suspended at {s.step_name}")
        return JSONResponse(status_code=202, content={"suspended": True, "step": s.step_name, "resume_in": s.resume_in})
    except NonRetriableError as e:
        log.error(f"[{resource_id}] {event} failed permanently: {e}")
        return JSONResponse(status_code=200, content={"ok": False, "error": str(e)})
    except HTTPException:
        raise
    except Exception as e:
        log.exception(f"[{resource_id}] {event} failed; queue will redeliver: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return JSONResponse(status_code=200, content={"ok": True, "result": result})


@router.post("/worker/{event}/{resource_id}")
async def worker(event: str, resource_id: str, request: Request, pipeline: Pipeline = Depends(get_pipeline)):
    body = await request.body()
    payload: Dict[str, Any] = {}
    if body:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="body must be a JSON object")
    return await run_in_threadpool(dispatch, event, resource_id, payload, pipeline)
