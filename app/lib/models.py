# app/lib/models.py
"""Relational tables for orders, pages, purchases, the credit ledger and step checkpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.lib.db import Base


def new_id() -> str:
    return uuid.uuid4().hex


class TimestampMixin:
    """Adds ``created_at`` / ``updated_at`` columns."""

    created_at: Mapped[datetime] = mapped_column(default=func.now(), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=func.now(), server_default=func.now(), onupdate=func.now()
    )


# -------------------------------------------------------------------
# Orders / manifests / pages
# -------------------------------------------------------------------

ORDER_STATUSES = ("awaiting_payment", "paid", "manifest_ready", "generating", "complete", "failed")
PAGE_STATUSES = ("pending", "generating", "complete", "failed")
PURCHASE_STATUSES = ("awaiting_payment", "paid", "generating", "complete", "failed")


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    status: Mapped[str] = mapped_column(String(32), default="awaiting_payment", index=True)
    user_input: Mapped[Dict[str, Any]] = mapped_column(JSON)
    price_tier: Mapped[str] = mapped_column(String(16), default="standard")
    preview_candidates: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    preview_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preview_seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # payment fields: written once by the payment confirmation handler
    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    pdf_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    library_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (CheckConstraint(f"status IN {ORDER_STATUSES}", name="ck_orders_status"),)


class CharacterManifestRecord(Base):
    __tablename__ = "character_manifests"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), unique=True)
    character_name: Mapped[str] = mapped_column(String(255))
    character_type: Mapped[str] = mapped_column(String(16))
    theme: Mapped[str] = mapped_column(Text)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON)
    raw_llm_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), server_default=func.now())


class Page(TimestampMixin, Base):
    __tablename__ = "pages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    manifest_id: Mapped[str] = mapped_column(ForeignKey("character_manifests.id", ondelete="CASCADE"))
    page_number: Mapped[int] = mapped_column(Integer)
    seed: Mapped[int] = mapped_column(Integer)
    scene_description: Mapped[str] = mapped_column(Text)
    full_prompt: Mapped[str] = mapped_column(Text)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("order_id", "page_number", name="uq_pages_order_page"),
        CheckConstraint(f"status IN {PAGE_STATUSES}", name="ck_pages_status"),
    )


# -------------------------------------------------------------------
# Library purchases
# -------------------------------------------------------------------

class LibraryPurchase(TimestampMixin, Base):
    __tablename__ = "library_purchases"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    selected_page_ids: Mapped[List[str]] = mapped_column(JSON)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    credits_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_email: Mapped[str] = mapped_column(String(320))
    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="awaiting_payment")
    pdf_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (CheckConstraint(f"status IN {PURCHASE_STATUSES}", name="ck_library_purchases_status"),)


# -------------------------------------------------------------------
# Credit ledger
# -------------------------------------------------------------------

CREDIT_REASONS = ("purchase", "creator_earn", "purchase_bonus", "refund", "spend")


class CreditAccount(TimestampMixin, Base):
    __tablename__ = "credit_accounts"

    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance"),)


class CreditTransaction(Base):
    """Append-only. The source of truth for any balance reconciliation."""

    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), index=True)
    amount: Mapped[int] = mapped_column(Integer)  # signed
    reason: Mapped[str] = mapped_column(String(32))
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), server_default=func.now())

    __table_args__ = (CheckConstraint(f"reason IN {CREDIT_REASONS}", name="ck_credit_transactions_reason"),)


class PendingCreditPurchase(TimestampMixin, Base):
    __tablename__ = "pending_credit_purchases"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320))
    credits: Mapped[int] = mapped_column(Integer)
    amount_cents: Mapped[int] = mapped_column(Integer)
    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending")


# -------------------------------------------------------------------
# Idempotency / durable execution
# -------------------------------------------------------------------

class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(default=func.now(), server_default=func.now())


class StepRun(Base):
    """Checkpoint of one named step within one run (run_key)."""

    __tablename__ = "step_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_key: Mapped[str] = mapped_column(String(255), index=True)
    step_name: Mapped[str] = mapped_column(String(255))
    result: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    wake_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), server_default=func.now())

    __table_args__ = (UniqueConstraint("run_key", "step_name", name="uq_step_runs_key_name"),)
