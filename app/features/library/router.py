# app/features/library/router.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.pipeline import Pipeline, get_pipeline
from . import service
from .schemas import LibraryCheckoutResponse, LibrarySelection, PurchaseStatusResponse, RedeemResponse

router = APIRouter(prefix="/api/v1/library", tags=["library"])


@router.post("/checkout", response_model=LibraryCheckoutResponse)
def checkout(sel: LibrarySelection, pipeline: Pipeline = Depends(get_pipeline)) -> LibraryCheckoutResponse:
    return service.start_library_checkout(pipeline, sel)

@router.post("/redeem", response_model=RedeemResponse, status_code=202)
def redeem(sel: LibrarySelection, pipeline: Pipeline = Depends(get_pipeline)) -> RedeemResponse:
    return service.redeem_with_credits(pipeline, sel)

@router.get("/purchases/{purchase_id}", response_model=PurchaseStatusResponse)
def purchase_status(purchase_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> PurchaseStatusResponse:
    return service.get_purchase_status(pipeline, purchase_id)
