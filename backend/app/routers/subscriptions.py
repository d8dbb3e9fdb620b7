"""購読ルーター: 決済開始、登録同時決済、ステータス照会、購読状況"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.rate_limit import limiter, PAYMENT_INITIATE_RATE_LIMIT, STATUS_POLL_RATE_LIMIT
from app.models.user import User
from app.schemas.auth import SubscriptionSnapshot
from app.schemas.subscription import (
    InitiatePaymentRequest,
    RegisterAndPayRequest,
    InitiatePaymentResponse,
    PaymentStatusResponse,
    QueueEntryInfo,
    MySubscriptionResponse,
)
from app.services import ledger_service, payment_service
from app.routers.deps import get_current_user

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def _initiated(result: payment_service.InitiatedPayment) -> InitiatePaymentResponse:
    return InitiatePaymentResponse(
        transaction_id=result.payment.transaction_id,
        payment_url=result.payment_url,
        amount=result.payment.amount,
        currency=result.payment.currency,
        display_id=result.display_id,
    )


@router.post("/initiate", response_model=InitiatePaymentResponse)
@limiter.limit(PAYMENT_INITIATE_RATE_LIMIT)
def initiate(
    request: Request,
    req: InitiatePaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """プラン購入の決済開始"""
    return _initiated(payment_service.initiate_payment(db, user, req.plan_id))


@router.post("/register-and-pay", response_model=InitiatePaymentResponse)
@limiter.limit(PAYMENT_INITIATE_RATE_LIMIT)
def register_and_pay(request: Request, req: RegisterAndPayRequest, db: Session = Depends(get_db)):
    """新規登録と同時に決済開始 (未ログイン)"""
    result = payment_service.register_and_pay(
        db, mobile=req.mobile, full_name=req.full_name, plan_id=req.plan_id, city=req.city,
    )
    return _initiated(result)


@router.get("/status/{transaction_id}", response_model=PaymentStatusResponse)
@limiter.limit(STATUS_POLL_RATE_LIMIT)
def payment_status(request: Request, transaction_id: str, db: Session = Depends(get_db)):
    """決済ステータス照会 (Webhook未着時はゲートウェイに問い合わせて反映)"""
    view = payment_service.poll_status(db, transaction_id)
    return PaymentStatusResponse(
        transaction_id=view.payment.transaction_id,
        status=view.payment.status,
        amount=view.payment.amount,
        currency=view.payment.currency,
        plan_name=view.plan.name,
        display_id=view.display_id,
        temp_password=view.temp_password,
    )


@router.get("/me", response_model=MySubscriptionResponse)
def my_subscription(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """購読スナップショットとキュー"""
    queue = [QueueEntryInfo.from_item(item) for item in ledger_service.current_queue(db, user.id)]
    return MySubscriptionResponse(snapshot=SubscriptionSnapshot.from_user(user), queue=queue)
