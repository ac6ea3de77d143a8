# app/features/assembly/service.py
from __future__ import annotations

from typing import List, Sequence

from app.config import Config
from app.lib.gcs_inventory import DocumentStore
from app.lib.pdf import make_pdf
from app.lib.steps import NonRetriableError
from app.logger import get_logger

log = get_logger(__name__)

def book_object_name(order_id: str) -> str:
    return f"books/{order_id}.pdf"

def library_object_name(purchase_id: str) -> str:
    return f"library/{purchase_id}.pdf"


class AssemblyStage:
    """Fetch finished page images in order, render one PDF, store it."""

    def __init__(self, cfg: Config, store: DocumentStore):
        self.cfg = cfg
        self.store = store

    def assemble(self, image_urls: Sequence[str], *, object_name: str, title: str = "Coloring Book") -> str:
        urls: List[str] = [u for u in image_urls if u]
        if not urls:
            raise NonRetriableError(f"nothing to assemble for {object_name}: no completed page images")
        images = [self.store.get(u) for u in urls]
        pdf = make_pdf(images, title=title)
        location = self.store.put(object_name, pdf, "application/pdf")
        log.info(f"assembled {len(images)} pages into {location}")
        return location
