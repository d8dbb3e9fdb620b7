"""Stripe Webhook ルーター"""
import stripe
from fastapi import APIRouter, Request, HTTPException
from starlette.concurrency import run_in_threadpool

from app.core.database import SessionLocal
from app.core.errors import UnknownTransaction
from app.services import payment_service, stripe_service
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request):
    """Stripe Webhook エンドポイント (署名検証)"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = stripe_service.construct_webhook_event(payload, sig_header)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Stripe webhook署名検証失敗: {e}")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payment = await run_in_threadpool(_apply_event, event)
    except UnknownTransaction:
        # 再送されても解決しないので 200 で受理
        return {"received": True}

    if payment is None:
        logger.info(f"未処理のStripeイベント: {event['type']}")
    return {"received": True}


def _apply_event(event):
    db = SessionLocal()
    try:
        return payment_service.apply_gateway_event(db, event)
    except UnknownTransaction:
        raise
    except Exception as e:
        logger.error(f"Stripe webhook処理エラー: {event['type']} - {e}")
        raise
    finally:
        db.close()
