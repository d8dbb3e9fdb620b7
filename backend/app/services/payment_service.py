"""
決済イベント処理

Webhook とステータス照会のどちらから結果が届いても同じ on_payment_result に集約し、
transaction_id を冪等キーとして台帳への反映を1回に限定する。
"""
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import UnknownTransaction, GatewayUnavailable, DuplicateUser, NotFound
from app.core.logging import get_logger
from app.core.security import encrypt, decrypt
from app.core.timeutil import utcnow
from app.models.ledger_entry import LedgerEntry
from app.models.payment import Payment, TERMINAL_PAYMENT_STATUSES
from app.models.plan import Plan
from app.models.user import User
from app.services import auth_service, ledger_service, plan_catalog, stripe_service
from app.services.concurrency import lock_for_update, run_with_retry

logger = get_logger(__name__)

# ゲートウェイ結果コード
PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
PAYMENT_ERROR = "PAYMENT_ERROR"
PAYMENT_DECLINED = "PAYMENT_DECLINED"
PAYMENT_PENDING = "PAYMENT_PENDING"
RESULT_CODES = (PAYMENT_SUCCESS, PAYMENT_ERROR, PAYMENT_DECLINED, PAYMENT_PENDING)

TRANSACTION_PREFIX = "TXN"
ADMIN_TRANSACTION_PREFIX = "ADMIN"


@dataclass
class InitiatedPayment:
    payment: Payment
    payment_url: str
    display_id: Optional[str] = None


@dataclass
class PaymentStatusView:
    payment: Payment
    plan: Plan
    display_id: Optional[str] = None
    temp_password: Optional[str] = None


def generate_transaction_id(prefix: str = TRANSACTION_PREFIX) -> str:
    """{prefix}_{ミリ秒}_{16進16桁}"""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(8).upper()}"


def _status_page_url(transaction_id: str) -> str:
    return f"{settings.SITE_URL}/payment/status?transaction_id={transaction_id}"


# =========================================================
# 決済開始
# =========================================================

def _start_checkout(db: Session, payment: Payment, plan: Plan, payer_ref: str) -> str:
    """
    ゲートウェイに決済を作成。接続できなければ決済を failed にして GatewayUnavailable を送出
    """
    try:
        return stripe_service.initiate(
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            currency=payment.currency,
            product_name=f"{plan.name} ({plan.duration_label})",
            payer_ref=payer_ref,
            redirect_url=_status_page_url(payment.transaction_id),
            cancel_url=f"{settings.SITE_URL}/plans",
        )
    except GatewayUnavailable:
        payment.status = "failed"
        db.commit()
        logger.warning(f"決済開始失敗 (ゲートウェイ不通): transaction_id={payment.transaction_id}")
        raise


def initiate_payment(db: Session, user: User, plan_id: int) -> InitiatedPayment:
    """既存ユーザーのプラン購入"""
    plan = plan_catalog.get_plan(db, plan_id, active_only=True)
    payment = Payment(
        user_id=user.id,
        plan_id=plan.id,
        amount=plan.price,
        currency=plan.currency,
        status="pending",
        transaction_id=generate_transaction_id(),
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    logger.info(f"決済開始: transaction_id={payment.transaction_id}, user_id={user.id}, plan={plan.name}")

    url = _start_checkout(db, payment, plan, payer_ref=user.display_id)
    return InitiatedPayment(payment=payment, payment_url=url)


def _is_abandoned_registration(db: Session, user: User) -> bool:
    """無効ユーザーで、過去の決済が全て failed (処理中・完了済みの決済がない)"""
    if user.is_active:
        return False
    return db.query(Payment.id).filter(
        Payment.user_id == user.id,
        Payment.status != "failed",
    ).first() is None


def register_and_pay(
    db: Session,
    mobile: str,
    full_name: str,
    plan_id: int,
    city: Optional[str] = None,
) -> InitiatedPayment:
    """
    新規登録と同時にプラン購入。

    ユーザーは無効状態で作成し、決済完了時に有効化する。
    仮パスワードは暗号化して決済レコードに保持し、ステータス照会で1度だけ返す。
    """
    plan = plan_catalog.get_plan(db, plan_id, active_only=True)
    existing = auth_service.get_user_by_mobile(db, mobile)
    if existing is not None and not _is_abandoned_registration(db, existing):
        raise DuplicateUser("この携帯番号は登録済みです。ログインしてください")

    temp_password = auth_service.generate_temp_password()
    try:
        if existing is not None:
            # 決済が全て失敗に終わった登録はやり直しを許可する
            user = existing
            user.full_name = full_name
            user.city = city
            user.password_hash = auth_service.hash_password(temp_password)
        else:
            user = auth_service.create_user(
                db, mobile=mobile, password=temp_password, full_name=full_name, city=city, is_active=False,
            )
        payment = Payment(
            user_id=user.id,
            plan_id=plan.id,
            amount=plan.price,
            currency=plan.currency,
            status="pending",
            transaction_id=generate_transaction_id(),
            is_new_user=True,
            temp_password_enc=encrypt(temp_password),
        )
        db.add(payment)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(payment)
    logger.info(f"登録同時決済開始: transaction_id={payment.transaction_id}, user_id={user.id}")

    url = _start_checkout(db, payment, plan, payer_ref=user.display_id)
    return InitiatedPayment(payment=payment, payment_url=url, display_id=user.display_id)


# =========================================================
# 結果反映
# =========================================================

def _enable_user(db: Session, user: User, payment: Optional[Payment] = None):
    """
    決済完了でユーザーを有効化する。

    登録同時決済では、有効化した決済の仮パスワードをそのままログインパスワードにする。
    既に有効なユーザーには仮パスワードを渡さない。
    """
    if user.is_active:
        if payment is not None and payment.temp_password_enc:
            payment.temp_password_enc = None
            logger.info(f"有効化済みユーザーのため仮パスワードを破棄: transaction_id={payment.transaction_id}")
        return
    if payment is not None and payment.is_new_user and payment.temp_password_enc:
        user.password_hash = auth_service.hash_password(decrypt(payment.temp_password_enc))
    user.is_active = True
    logger.info(f"ユーザー有効化: user_id={user.id}")


def on_payment_result(
    db: Session,
    transaction_id: str,
    result_code: str,
    gateway_transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    決済結果を反映する。

    - 既に終端状態 (completed / failed) なら何もしない
    - 成功: completed → 台帳に追加 → ユーザー有効化
    - 失敗・拒否: failed (台帳への影響なし)
    """
    if result_code not in RESULT_CODES:
        raise ValueError(f"不明な結果コード: {result_code}")
    now = now or utcnow()

    def _apply() -> Payment:
        payment = lock_for_update(db.query(Payment).filter(Payment.transaction_id == transaction_id)).first()
        if payment is None:
            raise UnknownTransaction(f"不明なtransaction_id: {transaction_id}")

        if payment.status in TERMINAL_PAYMENT_STATUSES:
            logger.info(f"決済結果の再送を無視: transaction_id={transaction_id}, status={payment.status}")
            return payment
        if result_code == PAYMENT_PENDING:
            return payment

        if result_code == PAYMENT_SUCCESS:
            payment.status = "completed"
            payment.gateway_transaction_id = gateway_transaction_id
            db.flush()
            ledger_service.enqueue(db, payment.user_id, payment.plan_id, payment.id, now)
            _enable_user(db, db.get(User, payment.user_id), payment)
        else:
            payment.status = "failed"
        db.flush()
        logger.info(f"決済結果反映: transaction_id={transaction_id}, result={result_code}, status={payment.status}")
        return payment

    try:
        return run_with_retry(db, _apply, label=f"payment {transaction_id}")
    except UnknownTransaction:
        logger.warning(f"未知の決済結果: transaction_id={transaction_id}, result={result_code}")
        raise


def apply_gateway_event(db: Session, event) -> Optional[Payment]:
    """署名検証済みの Stripe イベントを反映。対象外なら None"""
    result = stripe_service.parse_checkout_event(event)
    if result is None:
        return None
    code = PAYMENT_SUCCESS if result.succeeded else PAYMENT_ERROR
    return on_payment_result(db, result.transaction_id, code, result.gateway_transaction_id)


def poll_status(db: Session, transaction_id: str) -> PaymentStatusView:
    """
    決済ステータス照会。

    pending ならゲートウェイに問い合わせて Webhook と同じ処理で反映する。
    ゲートウェイ不通時は pending のまま GatewayUnavailable を送出する。
    """
    payment = db.query(Payment).filter(Payment.transaction_id == transaction_id).first()
    if payment is None:
        raise UnknownTransaction(f"不明なtransaction_id: {transaction_id}")

    if payment.status == "pending" and payment.granted_by_admin_id is None:
        status = stripe_service.check_status(transaction_id)
        if status.state == stripe_service.GATEWAY_COMPLETED:
            payment = on_payment_result(db, transaction_id, PAYMENT_SUCCESS, status.gateway_transaction_id)
        elif status.state == stripe_service.GATEWAY_FAILED:
            payment = on_payment_result(db, transaction_id, PAYMENT_ERROR, status.gateway_transaction_id)

    plan = plan_catalog.get_plan(db, payment.plan_id)
    view = PaymentStatusView(payment=payment, plan=plan)

    if payment.is_new_user and payment.status == "completed":
        user = db.get(User, payment.user_id)
        view.display_id = user.display_id
        if payment.temp_password_enc:
            view.temp_password = decrypt(payment.temp_password_enc)
            payment.temp_password_enc = None
            db.commit()
            logger.info(f"仮パスワード受け渡し: transaction_id={transaction_id}, user_id={user.id}")
    return view


# =========================================================
# 管理者付与
# =========================================================

def grant_plan(db: Session, admin_id: int, user_id: int, plan_id: int, now: Optional[datetime] = None) -> LedgerEntry:
    """管理者によるプラン付与。金額0の完了済み決済を作り、通常購入と同じく台帳に積む"""
    plan = plan_catalog.get_plan(db, plan_id)
    if auth_service.get_user_by_id(db, user_id) is None:
        raise NotFound(f"ユーザーが存在しません: user_id={user_id}")

    def _grant() -> LedgerEntry:
        payment = Payment(
            user_id=user_id,
            plan_id=plan.id,
            amount=0,
            currency=plan.currency,
            status="completed",
            transaction_id=generate_transaction_id(ADMIN_TRANSACTION_PREFIX),
            granted_by_admin_id=admin_id,
        )
        db.add(payment)
        db.flush()
        entry = ledger_service.enqueue(db, user_id, plan.id, payment.id, now)
        _enable_user(db, db.get(User, user_id))
        return entry

    entry = run_with_retry(db, _grant, label=f"grant user={user_id}")
    logger.info(f"管理者プラン付与: admin_id={admin_id}, user_id={user_id}, plan={plan.name}, entry_id={entry.id}")
    return entry
