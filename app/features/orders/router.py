# app/features/orders/router.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.logger import get_logger
from app.pipeline import Pipeline, get_pipeline
from . import service
from .schemas import (
    CheckoutRequest,
    CheckoutResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    LibraryFlagRequest,
    OrderStatusResponse,
    PreviewsResponse,
    RegenerateResponse,
    SelectPreviewRequest,
)

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])
log = get_logger(__name__)


@router.post("", response_model=CreateOrderResponse, status_code=201)
def create_order(req: CreateOrderRequest, pipeline: Pipeline = Depends(get_pipeline)) -> CreateOrderResponse:
    return service.create_order(pipeline, req)

@router.post("/{order_id}/previews", response_model=PreviewsResponse)
def generate_previews(order_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> PreviewsResponse:
    return service.generate_previews(pipeline, order_id)

@router.post("/{order_id}/previews/select")
def select_preview(order_id: str, req: SelectPreviewRequest) -> dict:
    return service.select_preview(order_id, req.index)

@router.post("/{order_id}/checkout", response_model=CheckoutResponse)
def checkout(order_id: str, req: CheckoutRequest, pipeline: Pipeline = Depends(get_pipeline)) -> CheckoutResponse:
    return service.start_checkout(pipeline, order_id, req.email)

@router.get("/{order_id}", response_model=OrderStatusResponse)
def get_order(order_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> OrderStatusResponse:
    return service.get_order_status(pipeline, order_id)

@router.patch("/{order_id}/library")
def set_library_flag(order_id: str, req: LibraryFlagRequest) -> dict:
    return service.set_library_flag(order_id, req.opt_in)

@router.post("/{order_id}/pages/{page_id}/regenerate", response_model=RegenerateResponse, status_code=202)
def regenerate_page(order_id: str, page_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> RegenerateResponse:
    """Spend a credit and queue a re-roll of one completed page."""
    return service.request_regeneration(pipeline, order_id, page_id)
