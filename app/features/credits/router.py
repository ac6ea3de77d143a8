# app/features/credits/router.py
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.config import config
from .ledger import get_balance, normalize_email
from .service import start_credit_checkout

router = APIRouter(prefix="/api/v1/credits", tags=["credits"])


class CreditCheckoutRequest(BaseModel):
    email: str = Field(..., min_length=3)
    credits: int = Field(..., gt=0)


@router.get("/packs")
def packs() -> dict:
    return {"currency": config.currency, "packs": [
        {"credits": credits, "amount_cents": cents} for credits, cents in sorted(config.credit_packs.items())
    ]}

@router.get("/{email}")
def balance(email: str) -> dict:
    email = normalize_email(email)
    return {"email": email, "balance": get_balance(email)}

@router.post("/checkout")
def checkout(req: CreditCheckoutRequest) -> dict:
    return start_credit_checkout(config, email=req.email, credits=req.credits)
