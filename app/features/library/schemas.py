# app/features/library/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

class LibrarySelection(BaseModel):
    page_ids: List[str] = Field(..., min_length=1, description="Selected page ids, in book order")
    email: str = Field(..., min_length=3)

    @field_validator("page_ids")
    @classmethod
    def _dedupe(cls, v: List[str]) -> List[str]:
        seen = set()
        out = []
        for pid in v:
            if pid not in seen:
                seen.add(pid)
                out.append(pid)
        return out

class LibraryCheckoutResponse(BaseModel):
    purchase_id: str
    session_id: str
    checkout_url: Optional[str] = None
    amount_cents: int

class RedeemResponse(BaseModel):
    purchase_id: str
    credits_used: int
    balance: int

class PurchaseStatusResponse(BaseModel):
    purchase_id: str
    status: str
    page_count: int
    pdf_url: Optional[str] = None
    error: Optional[str] = None
