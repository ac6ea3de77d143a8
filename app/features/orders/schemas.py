# app/features/orders/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field

from app.features.manifest.schemas import PriceTier

class CreateOrderRequest(BaseModel):
    description: str = Field(..., min_length=1, description="Freeform description of the main character")
    character_name: Optional[str] = Field(None, description="Character name, if any")
    theme: Optional[str] = Field(None, description="Theme / adventure for the book")
    price_tier: PriceTier = "standard"

class CreateOrderResponse(BaseModel):
    order_id: str
    status: str
    price_cents: int

class PreviewCandidate(BaseModel):
    index: int
    url: str
    seed: int

class PreviewsResponse(BaseModel):
    order_id: str
    candidates: List[PreviewCandidate]

class SelectPreviewRequest(BaseModel):
    index: int = Field(..., ge=0)

class CheckoutRequest(BaseModel):
    email: Optional[str] = None

class CheckoutResponse(BaseModel):
    order_id: str
    session_id: str
    checkout_url: Optional[str] = None

class PageOut(BaseModel):
    id: str
    page_number: int
    status: str
    image_url: Optional[str] = None
    error: Optional[str] = None

class OrderStatusResponse(BaseModel):
    order_id: str
    status: str
    price_tier: str
    preview_image_url: Optional[str] = None
    pages: List[PageOut] = Field(default_factory=list)
    pdf_url: Optional[str] = None
    library_opt_in: bool = False
    error: Optional[str] = None

class LibraryFlagRequest(BaseModel):
    opt_in: bool

class RegenerateResponse(BaseModel):
    page_id: str
    request_id: str
    balance: int
