# app/lib/queries.py
"""
Store operations used by the pipeline and the request handlers.

Every state change that can race goes through one of two primitives:
  - conditional UPDATE ("only if still in state X"), reporting rowcount
  - insert-or-ignore (db.insert_ignore), reporting whether the row was new
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.lib.db import get_db_session, insert_ignore
from app.lib.models import (
    CharacterManifestRecord,
    LibraryPurchase,
    Order,
    Page,
    PendingCreditPurchase,
    ProcessedWebhookEvent,
    new_id,
)
from app.logger import get_logger

log = get_logger(__name__)

# -------------------------------------------------------------------
# Orders
# -------------------------------------------------------------------

def create_order(user_input: Dict[str, Any], *, price_tier: str = "standard") -> Order:
    with get_db_session() as s:
        order = Order(id=new_id(), status="awaiting_payment", user_input=user_input,
                      price_tier=price_tier, preview_candidates=[])
        s.add(order)
    return order

def get_order(order_id: str) -> Optional[Order]:
    with get_db_session() as s:
        return s.get(Order, order_id)

def transition_order(order_id: str, from_statuses: Iterable[str], to_status: str, **fields: Any) -> bool:
    """Move an order to `to_status` only if it is currently in one of `from_statuses`."""
    with get_db_session() as s:
        res = s.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.in_(list(from_statuses)))
            .values(status=to_status, **fields)
        )
        return res.rowcount == 1

def mark_order_paid(
    order_id: str,
    *,
    session_id: str,
    email: str,
    amount_cents: int,
    currency: str,
) -> bool:
    """Write payment fields once. False if the order already left awaiting_payment."""
    return transition_order(
        order_id,
        ("awaiting_payment",),
        "paid",
        stripe_checkout_session_id=session_id,
        customer_email=email,
        amount_cents=amount_cents,
        currency=currency,
    )

def create_paid_order_from_session(
    *,
    session_id: str,
    email: str,
    amount_cents: int,
    currency: str,
    user_input: Dict[str, Any],
    price_tier: str = "standard",
    preview_image_url: Optional[str] = None,
) -> Optional[str]:
    """
    Payment-first flow: the session arrived with no matching order.
    Keyed on the unique session id; returns the new order id, or None if it already existed.
    """
    order_id = new_id()
    with get_db_session() as s:
        inserted = insert_ignore(s, Order, {
            "id": order_id,
            "status": "paid",
            "user_input": user_input,
            "price_tier": price_tier,
            "preview_candidates": [],
            "preview_image_url": preview_image_url,
            "stripe_checkout_session_id": session_id,
            "customer_email": email,
            "amount_cents": amount_cents,
            "currency": currency,
            "library_opt_in": False,
        })
    return order_id if inserted else None

def set_order_previews(order_id: str, candidates: List[Dict[str, Any]]) -> bool:
    with get_db_session() as s:
        res = s.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == "awaiting_payment")
            .values(preview_candidates=candidates)
        )
        return res.rowcount == 1

def select_order_preview(order_id: str, url: str, seed: int) -> bool:
    with get_db_session() as s:
        res = s.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == "awaiting_payment")
            .values(preview_image_url=url, preview_seed=seed)
        )
        return res.rowcount == 1

def set_library_opt_in(order_id: str, opt_in: bool) -> bool:
    with get_db_session() as s:
        res = s.execute(update(Order).where(Order.id == order_id).values(library_opt_in=opt_in))
        return res.rowcount == 1

# -------------------------------------------------------------------
# Manifests
# -------------------------------------------------------------------

def get_manifest(order_id: str) -> Optional[CharacterManifestRecord]:
    with get_db_session() as s:
        return s.scalars(
            select(CharacterManifestRecord).where(CharacterManifestRecord.order_id == order_id)
        ).first()

def insert_manifest(order_id: str, data: Dict[str, Any], raw: Optional[Dict[str, Any]] = None) -> CharacterManifestRecord:
    """Insert-or-ignore on order_id; always returns the stored row."""
    with get_db_session() as s:
        inserted = insert_ignore(s, CharacterManifestRecord, {
            "id": new_id(),
            "order_id": order_id,
            "character_name": data.get("character_name") or "the character",
            "character_type": data.get("character_type") or "other",
            "theme": data.get("theme") or "",
            "data": data,
            "raw_llm_response": raw,
        })
        if not inserted:
            log.info(f"[{order_id}] manifest already stored; keeping existing row")
    return get_manifest(order_id)

# -------------------------------------------------------------------
# Pages
# -------------------------------------------------------------------

def get_pages(order_id: str) -> List[Page]:
    with get_db_session() as s:
        return list(s.scalars(select(Page).where(Page.order_id == order_id).order_by(Page.page_number)))

def get_pending_pages(order_id: str) -> List[Page]:
    with get_db_session() as s:
        return list(s.scalars(
            select(Page)
            .where(Page.order_id == order_id, Page.status == "pending")
            .order_by(Page.page_number)
        ))

def get_page(page_id: str) -> Optional[Page]:
    with get_db_session() as s:
        return s.get(Page, page_id)

def get_pages_by_ids(page_ids: Sequence[str]) -> List[Page]:
    """Fetch pages by explicit id list, keeping the caller's order. Unknown ids are dropped."""
    if not page_ids:
        return []
    with get_db_session() as s:
        rows = {p.id: p for p in s.scalars(select(Page).where(Page.id.in_(list(page_ids))))}
    return [rows[i] for i in page_ids if i in rows]

def insert_pages(order_id: str, manifest_id: str, pages: List[Dict[str, Any]]) -> List[Page]:
    """
    Insert all page rows in one transaction. If rows already exist (replay or a
    concurrent run), the existing rows are returned untouched.
    """
    existing = get_pages(order_id)
    if existing:
        log.info(f"[{order_id}] {len(existing)} pages already inserted; skipping")
        return existing
    try:
        with get_db_session() as s:
            s.add_all([
                Page(
                    id=new_id(),
                    order_id=order_id,
                    manifest_id=manifest_id,
                    page_number=p["page_number"],
                    seed=p["seed"],
                    scene_description=p["scene_description"],
                    full_prompt=p["full_prompt"],
                    status="pending",
                )
                for p in pages
            ])
    except IntegrityError:
        log.warning(f"[{order_id}] concurrent page insert detected; using stored rows")
    return get_pages(order_id)

def update_page_image(page_id: str, image_url: str, provider_id: str) -> bool:
    with get_db_session() as s:
        res = s.execute(
            update(Page)
            .where(Page.id == page_id, Page.status.in_(["pending", "generating"]))
            .values(image_url=image_url, provider_id=provider_id, status="complete", error=None)
        )
        return res.rowcount == 1

def mark_page_failed(page_id: str, error: str) -> bool:
    with get_db_session() as s:
        res = s.execute(
            update(Page)
            .where(Page.id == page_id, Page.status.in_(["pending", "generating"]))
            .values(status="failed", error=error)
        )
        return res.rowcount == 1

def reset_page_for_regen(page_id: str) -> bool:
    """complete -> pending, clearing the previous image. Exactly one winner per request."""
    with get_db_session() as s:
        res = s.execute(
            update(Page)
            .where(Page.id == page_id, Page.status == "complete")
            .values(status="pending", image_url=None, provider_id=None, error=None)
        )
        return res.rowcount == 1

def reset_failed_page(page_id: str) -> bool:
    """failed -> pending so an operator resume regenerates it."""
    with get_db_session() as s:
        res = s.execute(
            update(Page)
            .where(Page.id == page_id, Page.status == "failed")
            .values(status="pending", image_url=None, provider_id=None, error=None)
        )
        return res.rowcount == 1

def get_creator_emails_for_pages(page_ids: Sequence[str]) -> List[Tuple[str, str]]:
    """(page_id, creator email) for each selected page whose order has a payer email."""
    if not page_ids:
        return []
    with get_db_session() as s:
        rows = s.execute(
            select(Page.id, Order.customer_email)
            .join(Order, Order.id == Page.order_id)
            .where(Page.id.in_(list(page_ids)))
        ).all()
    by_page = {pid: email for pid, email in rows if email}
    return [(pid, by_page[pid]) for pid in page_ids if pid in by_page]

def get_library_pages(page_ids: Sequence[str]) -> List[Tuple[Page, bool]]:
    """(page, order opted in to the public library) for each known id, in caller order."""
    if not page_ids:
        return []
    with get_db_session() as s:
        rows = s.execute(
            select(Page, Order.library_opt_in)
            .join(Order, Order.id == Page.order_id)
            .where(Page.id.in_(list(page_ids)))
        ).all()
    by_id = {page.id: (page, bool(opt_in)) for page, opt_in in rows}
    return [by_id[i] for i in page_ids if i in by_id]

# -------------------------------------------------------------------
# Library purchases
# -------------------------------------------------------------------

def create_library_purchase(
    *,
    selected_page_ids: List[str],
    customer_email: str,
    status: str,
    amount_cents: Optional[int] = None,
    credits_used: Optional[int] = None,
    purchase_id: Optional[str] = None,
) -> LibraryPurchase:
    with get_db_session() as s:
        purchase = LibraryPurchase(
            id=purchase_id or new_id(),
            selected_page_ids=list(selected_page_ids),
            customer_email=customer_email,
            status=status,
            amount_cents=amount_cents,
            credits_used=credits_used,
        )
        s.add(purchase)
    return purchase

def get_library_purchase(purchase_id: str) -> Optional[LibraryPurchase]:
    with get_db_session() as s:
        return s.get(LibraryPurchase, purchase_id)

def get_library_purchase_by_session(session_id: str) -> Optional[LibraryPurchase]:
    with get_db_session() as s:
        return s.scalars(
            select(LibraryPurchase).where(LibraryPurchase.stripe_checkout_session_id == session_id)
        ).first()

def link_library_purchase_session(purchase_id: str, session_id: str) -> None:
    with get_db_session() as s:
        s.execute(
            update(LibraryPurchase)
            .where(LibraryPurchase.id == purchase_id)
            .values(stripe_checkout_session_id=session_id)
        )

def transition_purchase(purchase_id: str, from_statuses: Iterable[str], to_status: str, **fields: Any) -> bool:
    with get_db_session() as s:
        res = s.execute(
            update(LibraryPurchase)
            .where(LibraryPurchase.id == purchase_id, LibraryPurchase.status.in_(list(from_statuses)))
            .values(status=to_status, **fields)
        )
        return res.rowcount == 1

# -------------------------------------------------------------------
# Pending credit purchases
# -------------------------------------------------------------------

def create_pending_credit_purchase(*, email: str, credits: int, amount_cents: int) -> PendingCreditPurchase:
    with get_db_session() as s:
        pending = PendingCreditPurchase(
            id=new_id(), email=email, credits=credits, amount_cents=amount_cents, status="pending"
        )
        s.add(pending)
    return pending

def link_pending_credit_session(pending_id: str, session_id: str) -> None:
    with get_db_session() as s:
        s.execute(
            update(PendingCreditPurchase)
            .where(PendingCreditPurchase.id == pending_id)
            .values(stripe_checkout_session_id=session_id)
        )

def get_pending_credit_purchase(pending_id: str) -> Optional[PendingCreditPurchase]:
    with get_db_session() as s:
        return s.get(PendingCreditPurchase, pending_id)

# -------------------------------------------------------------------
# Webhook dedup gate
# -------------------------------------------------------------------

def record_webhook_event(event_id: str, event_type: str) -> bool:
    """
    Atomic insert-or-ignore of the gateway's event id.
    True on first sight, False if this event was already recorded.
    """
    with get_db_session() as s:
        return insert_ignore(s, ProcessedWebhookEvent, {"event_id": event_id, "event_type": event_type}) == 1
