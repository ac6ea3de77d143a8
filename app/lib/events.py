# app/lib/events.py
"""
Trigger delivery for the pipeline controllers.

Every trigger is a Cloud Task that POSTs identifiers only to
  {BASE_URL}/api/v1/tasks/worker/{event}/{resource_id}
The same path is used for sleep continuations, with a schedule_time.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from app.config import Config, config as default_config
from app.lib.cloud_tasks import create_task
from app.logger import get_logger

log = get_logger(__name__)

GENERATE_BOOK = "generate-book"
ASSEMBLE_LIBRARY_BOOK = "assemble-library-book"
GRANT_CREDITS = "grant-credits"
REGENERATE_PAGE = "regenerate-page"

EVENTS = (GENERATE_BOOK, ASSEMBLE_LIBRARY_BOOK, GRANT_CREDITS, REGENERATE_PAGE)

def worker_url(event: str, resource_id: str, cfg: Config = default_config) -> str:
    return f"{cfg.public_base_url}/api/v1/tasks/worker/{event}/{resource_id}"

def send_event(
    event: str,
    resource_id: str,
    payload: Optional[Dict[str, Any]] = None,
    *,
    delay: float = 0,
    cfg: Config = default_config,
) -> Optional[str]:
    """Enqueue a trigger; returns the Cloud Task name."""
    if event not in EVENTS:
        raise ValueError(f"unknown event: {event}")
    resp = create_task(
        url=worker_url(event, resource_id, cfg),
        payload=payload or {},
        schedule_in_seconds=delay,
        cfg=cfg,
    )
    name = getattr(resp, "name", None)
    if delay > 0:
        log.info(f"[{resource_id}] {event} continuation scheduled in {delay:.1f}s")
    else:
        log.info(f"[{resource_id}] {event} sent")
    return name

def continuation(
    event: str,
    resource_id: str,
    payload: Optional[Dict[str, Any]] = None,
    *,
    cfg: Config = default_config,
) -> Callable[[float], None]:
    """A StepRunner scheduler that re-delivers the same trigger after a delay."""
    def schedule(delay: float) -> None:
        send_event(event, resource_id, payload, delay=delay, cfg=cfg)
    return schedule
