"""Routes for payment gateway webhook handling."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db import get_db
from app.schemas.webhook import WebhookAck
from app.services import psp_webhooks

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    # Signature verification needs the body exactly as sent.
    raw_body = await request.body()
    ack = await run_in_threadpool(
        psp_webhooks.reconcile_gateway_event,
        db,
        raw_body,
        request.headers.get("Stripe-Signature"),
    )
    return WebhookAck(**ack)


__all__ = ["router"]
