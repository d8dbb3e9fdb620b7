"""
決済ゲートウェイクライアント (Stripe Checkout)

自社採番の transaction_id を Checkout Session の client_reference_id と
PaymentIntent の metadata に載せ、Webhook / ステータス照会の双方から引けるようにする。
"""
from dataclasses import dataclass
from typing import Optional

import stripe

from app.core.config import settings
from app.core.errors import GatewayUnavailable
from app.core.logging import get_logger

logger = get_logger(__name__)

GATEWAY_COMPLETED = "completed"
GATEWAY_PENDING = "pending"
GATEWAY_FAILED = "failed"

# 最小通貨単位への倍率 (INR / USD ともに 1/100)
MINOR_UNIT = 100

_PENDING_INTENT_STATUSES = (
    "processing",
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "requires_capture",
)

SUCCESS_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
FAILURE_EVENTS = ("checkout.session.async_payment_failed", "checkout.session.expired")


@dataclass
class GatewayStatus:
    state: str
    gateway_transaction_id: Optional[str] = None


@dataclass
class WebhookResult:
    """署名検証済みWebhookから取り出した決済結果"""
    transaction_id: str
    succeeded: bool
    gateway_transaction_id: Optional[str] = None
    event_type: str = ""


def _init_stripe():
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.default_http_client = stripe.new_default_http_client(timeout=settings.GATEWAY_TIMEOUT_SECONDS)


def initiate(
    transaction_id: str,
    amount: int,
    currency: str,
    product_name: str,
    payer_ref: str,
    redirect_url: str,
    cancel_url: str,
) -> str:
    """Checkout Session を作成し決済ページURLを返す"""
    _init_stripe()
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            client_reference_id=transaction_id,
            line_items=[{
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": amount * MINOR_UNIT,
                    "product_data": {"name": product_name},
                },
                "quantity": 1,
            }],
            payment_intent_data={"metadata": {"transaction_id": transaction_id, "payer_ref": payer_ref}},
            metadata={"transaction_id": transaction_id},
            success_url=redirect_url,
            cancel_url=cancel_url,
        )
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        raise GatewayUnavailable(f"決済ゲートウェイ接続失敗: {e.__class__.__name__}")
    except stripe.StripeError as e:
        logger.error(f"Checkout Session作成失敗: transaction_id={transaction_id}, error={e}")
        raise GatewayUnavailable(f"決済ゲートウェイエラー: {e.__class__.__name__}")

    logger.info(f"Checkout Session作成: transaction_id={transaction_id}, session={session.id}")
    return session.url


def check_status(transaction_id: str) -> GatewayStatus:
    """metadata.transaction_id で PaymentIntent を検索して状態を返す"""
    _init_stripe()
    try:
        result = stripe.PaymentIntent.search(
            query=f"metadata['transaction_id']:'{transaction_id}'",
            limit=1,
        )
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        raise GatewayUnavailable(f"決済ゲートウェイ接続失敗: {e.__class__.__name__}")
    except stripe.StripeError as e:
        logger.error(f"PaymentIntent検索失敗: transaction_id={transaction_id}, error={e}")
        raise GatewayUnavailable(f"決済ゲートウェイエラー: {e.__class__.__name__}")

    if not result.data:
        # Checkout 未完了ならまだ PaymentIntent は存在しない
        return GatewayStatus(state=GATEWAY_PENDING)

    intent = result.data[0]
    if intent.status == "succeeded":
        return GatewayStatus(state=GATEWAY_COMPLETED, gateway_transaction_id=intent.id)
    if intent.status == "canceled":
        return GatewayStatus(state=GATEWAY_FAILED, gateway_transaction_id=intent.id)
    if intent.status not in _PENDING_INTENT_STATUSES:
        logger.warning(f"不明なPaymentIntentステータス: {intent.status}, transaction_id={transaction_id}")
    return GatewayStatus(state=GATEWAY_PENDING)


def construct_webhook_event(payload: bytes, sig_header: str, secret: Optional[str] = None):
    """Webhook署名検証"""
    return stripe.Webhook.construct_event(payload, sig_header, secret or settings.STRIPE_WEBHOOK_SECRET)


def parse_checkout_event(event) -> Optional[WebhookResult]:
    """
    Checkout Session イベントを決済結果に変換する。

    対象外のイベント、未払いの completed (非同期決済待ち) は None。
    """
    event_type = event["type"]
    if event_type not in SUCCESS_EVENTS and event_type not in FAILURE_EVENTS:
        return None

    session = event["data"]["object"]
    transaction_id = session.get("client_reference_id") or (session.get("metadata") or {}).get("transaction_id")
    if not transaction_id:
        logger.warning(f"transaction_id のないCheckout Session: {session.get('id')}")
        return None

    if event_type in FAILURE_EVENTS:
        return WebhookResult(transaction_id=transaction_id, succeeded=False, event_type=event_type)

    if event_type == "checkout.session.completed" and session.get("payment_status") != "paid":
        return None

    return WebhookResult(
        transaction_id=transaction_id,
        succeeded=True,
        gateway_transaction_id=session.get("payment_intent"),
        event_type=event_type,
    )
