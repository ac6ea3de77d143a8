# app/features/credits/ledger.py
"""
Credit ledger: one balance row per email plus an append-only transaction log.

Debits are serialised per email with an in-process lock and, across processes,
by the conditional UPDATE (balance >= amount) that the database applies atomically.
The transaction row is written in the same DB transaction as the balance change.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.lib.db import get_db_session, insert_ignore
from app.lib.models import CREDIT_REASONS, CreditAccount, CreditTransaction, new_id
from app.logger import get_logger

log = get_logger(__name__)


class InsufficientCredits(Exception):
    def __init__(self, email: str, needed: int, balance: int):
        super().__init__(f"insufficient credits: need {needed}, have {balance}")
        self.email = email
        self.needed = needed
        self.balance = balance


@dataclass
class DebitResult:
    success: bool
    balance: int
    error: Optional[str] = None


_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()

def _lock_for(email: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(email)
        if lock is None:
            lock = _locks[email] = threading.Lock()
        return lock

def normalize_email(email: str) -> str:
    return email.strip().lower()

def _check(amount: int, reason: str) -> None:
    if amount <= 0:
        raise ValueError("amount must be a positive integer")
    if reason not in CREDIT_REASONS:
        raise ValueError(f"unknown credit reason: {reason}")

def _balance(s: Session, email: str) -> int:
    value = s.scalar(select(CreditAccount.balance).where(CreditAccount.email == email))
    return int(value or 0)

# -------------------------------------------------------------------
# Operations
# -------------------------------------------------------------------

def get_balance(email: str) -> int:
    with get_db_session() as s:
        return _balance(s, normalize_email(email))

def _apply_credit(
    s: Session,
    email: str,
    amount: int,
    reason: str,
    reference_id: Optional[str],
    description: Optional[str],
) -> int:
    insert_ignore(s, CreditAccount, {"email": email, "balance": 0})
    s.execute(
        update(CreditAccount)
        .where(CreditAccount.email == email)
        .values(balance=CreditAccount.balance + amount)
    )
    s.add(CreditTransaction(
        id=new_id(),
        email=email,
        amount=amount,
        reason=reason,
        reference_id=reference_id,
        description=description,
    ))
    s.flush()
    return _balance(s, email)

def credit(
    email: str,
    amount: int,
    reason: str,
    *,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
    session: Optional[Session] = None,
) -> int:
    """
    Add credits and append the matching transaction. Pass `session` to join a
    caller's transaction (e.g. a pending purchase flipping to complete).
    Returns the new balance.
    """
    _check(amount, reason)
    email = normalize_email(email)
    if session is not None:
        balance = _apply_credit(session, email, amount, reason, reference_id, description)
    else:
        with get_db_session() as s:
            balance = _apply_credit(s, email, amount, reason, reference_id, description)
    log.info(f"[{email}] +{amount} credits ({reason}{', ref ' + reference_id if reference_id else ''}) -> {balance}")
    return balance

def debit(
    email: str,
    amount: int,
    reason: str = "spend",
    *,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
) -> DebitResult:
    """
    All-or-nothing: either the balance drops by `amount` and one transaction is
    appended, or nothing changes and success is False.
    """
    _check(amount, reason)
    email = normalize_email(email)
    with _lock_for(email):
        with get_db_session() as s:
            res = s.execute(
                update(CreditAccount)
                .where(CreditAccount.email == email, CreditAccount.balance >= amount)
                .values(balance=CreditAccount.balance - amount)
            )
            if res.rowcount != 1:
                balance = _balance(s, email)
                log.info(f"[{email}] debit of {amount} refused: balance {balance}")
                return DebitResult(success=False, balance=balance, error="insufficient credits")
            s.add(CreditTransaction(
                id=new_id(),
                email=email,
                amount=-amount,
                reason=reason,
                reference_id=reference_id,
                description=description,
            ))
            s.flush()
            balance = _balance(s, email)
    log.info(f"[{email}] -{amount} credits ({reason}) -> {balance}")
    return DebitResult(success=True, balance=balance)

def require_debit(email: str, amount: int, **kwargs) -> DebitResult:
    """debit() that raises InsufficientCredits instead of returning a failed result."""
    result = debit(email, amount, **kwargs)
    if not result.success:
        raise InsufficientCredits(normalize_email(email), amount, result.balance)
    return result
