# app/features/payments/router.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from app.config import config
from .webhook import WebhookSignatureError, handle_stripe_webhook

router = APIRouter(prefix="/api/v1/webhooks", tags=["payments"])


@router.post("/stripe")
async def stripe_webhook(request: Request) -> dict:
    payload = await request.body()
    try:
        return handle_stripe_webhook(config, payload, request.headers.get("stripe-signature"))
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=f"invalid signature: {e}")
