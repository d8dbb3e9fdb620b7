"""
購読台帳: ユーザーごとのプランキュー

- active なエントリはユーザーあたり最大1件
- queue_position はユーザー内で1始まりの連番
- ユーザーの購読スナップショット (users.sub_*) はこのモジュールからのみ更新する

各関数は flush のみ行う。commit は呼び出し側 (run_with_retry) の責務。
台帳を変更する前に必ずユーザー行を FOR UPDATE でロックし、
同一ユーザーへの決済反映とスケジューラの昇格を直列化する。
ロック後の判定に使う読み取りもロック付きで行う (REPEATABLE READ でも最新のコミット済み行を読むため)。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models.ledger_entry import LedgerEntry
from app.models.plan import Plan
from app.models.user import User
from app.services import plan_catalog
from app.services.concurrency import lock_for_update
from app.core.logging import get_logger
from app.core.timeutil import utcnow

logger = get_logger(__name__)

OPEN_STATUSES = ("active", "pending")


@dataclass
class Promotion:
    """昇格処理の結果。promoted が None なら後続なしで購読終了"""
    completed: LedgerEntry
    promoted: Optional[LedgerEntry] = None


@dataclass
class QueueItem:
    entry: LedgerEntry
    plan: Plan

    @property
    def remaining_days(self) -> Optional[int]:
        if self.entry.status != "active" or self.entry.expiry_date is None:
            return None
        delta = self.entry.expiry_date - utcnow()
        return max(delta.days, 0)


def _lock_user(db: Session, user_id: int) -> User:
    user = lock_for_update(db.query(User).filter(User.id == user_id)).populate_existing().first()
    if user is None:
        raise ValueError(f"ユーザーが存在しません: user_id={user_id}")
    return user


def _locked_entry(db: Session, entry_id: int) -> Optional[LedgerEntry]:
    return lock_for_update(db.query(LedgerEntry).filter(LedgerEntry.id == entry_id)).populate_existing().first()


# =========================================================
# スナップショット (台帳の active エントリのキャッシュ)
# =========================================================

def _write_snapshot(user: User, entry: LedgerEntry, plan: Plan):
    user.sub_tier = plan.tier
    user.sub_start_date = entry.activation_date
    user.sub_end_date = entry.expiry_date
    user.sub_is_active = True
    user.sub_max_visible_targets = plan.max_visible_targets
    user.sub_reminder_lead_hours = plan.reminder_lead_hours
    user.sub_reminder_sent = False


def _clear_snapshot(user: User):
    user.sub_tier = "None"
    user.sub_start_date = None
    user.sub_end_date = None
    user.sub_is_active = False
    user.sub_max_visible_targets = 2
    user.sub_reminder_lead_hours = 2
    user.sub_reminder_sent = False


def _activate(entry: LedgerEntry, plan: Plan, now: datetime):
    entry.status = "active"
    entry.activation_date = now
    entry.expiry_date = now + timedelta(days=plan.duration_days)


# =========================================================
# 台帳操作
# =========================================================

def enqueue(
    db: Session,
    user_id: int,
    plan_id: int,
    payment_id: int,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    """
    決済済みプランをキュー末尾に追加する。

    active / pending のエントリが無ければ即時有効化してスナップショットを書き込む。
    同じ payment_id のエントリが既にあればそれを返す。
    """
    now = now or utcnow()
    user = _lock_user(db, user_id)

    existing = db.query(LedgerEntry).filter(LedgerEntry.payment_id == payment_id).first()
    if existing:
        logger.info(f"台帳登録済み: payment_id={payment_id}, entry_id={existing.id}")
        return existing

    plan = plan_catalog.get_plan(db, plan_id)

    rows = lock_for_update(
        db.query(LedgerEntry.queue_position, LedgerEntry.status).filter(LedgerEntry.user_id == user_id)
    ).all()
    max_position = max((r.queue_position for r in rows), default=0)
    has_open = any(r.status in OPEN_STATUSES for r in rows)

    entry = LedgerEntry(
        user_id=user_id,
        plan_id=plan.id,
        payment_id=payment_id,
        status="pending",
        queue_position=max_position + 1,
    )
    if not has_open:
        _activate(entry, plan, now)
        _write_snapshot(user, entry, plan)

    db.add(entry)
    db.flush()
    logger.info(
        f"台帳追加: user_id={user_id}, plan={plan.name}, position={entry.queue_position}, "
        f"status={entry.status}, expiry={entry.expiry_date}"
    )
    return entry


def promote_next(db: Session, expired_entry: LedgerEntry, now: Optional[datetime] = None) -> Optional[Promotion]:
    """
    期限切れの active エントリを completed にし、次の順番の pending を有効化する。

    ロック取得後に再確認し、既に処理済み (active でない / 未到来) なら None。
    """
    now = now or utcnow()
    user = _lock_user(db, expired_entry.user_id)
    expired_entry = _locked_entry(db, expired_entry.id)

    if expired_entry is None or expired_entry.status != "active":
        return None
    if expired_entry.expiry_date is None or expired_entry.expiry_date > now:
        return None

    expired_entry.status = "completed"

    successor = lock_for_update(db.query(LedgerEntry).filter(
        LedgerEntry.user_id == expired_entry.user_id,
        LedgerEntry.status == "pending",
        LedgerEntry.queue_position == expired_entry.queue_position + 1,
    )).populate_existing().first()

    if successor is None:
        _clear_snapshot(user)
        db.flush()
        logger.info(
            f"購読終了: user_id={user.id}, entry_id={expired_entry.id}, "
            f"position={expired_entry.queue_position}"
        )
        return Promotion(completed=expired_entry)

    plan = plan_catalog.get_plan(db, successor.plan_id)
    _activate(successor, plan, now)
    _write_snapshot(user, successor, plan)
    db.flush()
    logger.info(
        f"次プラン昇格: user_id={user.id}, {expired_entry.id} → {successor.id}, "
        f"plan={plan.name}, expiry={successor.expiry_date}"
    )
    return Promotion(completed=expired_entry, promoted=successor)


def mark_reminder_sent(db: Session, entry: LedgerEntry) -> bool:
    """
    リマインダー送信済みフラグを立てる。

    スナップショットが既に別エントリを指している場合は何もしない。
    """
    user = _lock_user(db, entry.user_id)
    if not user.sub_is_active or user.sub_end_date != entry.expiry_date:
        return False
    user.sub_reminder_sent = True
    db.flush()
    return True


# =========================================================
# 参照
# =========================================================

def current_queue(db: Session, user_id: int) -> list[QueueItem]:
    """ユーザーの全エントリを queue_position 昇順で返す"""
    rows = (
        db.query(LedgerEntry, Plan)
        .join(Plan, Plan.id == LedgerEntry.plan_id)
        .filter(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.queue_position.asc())
        .all()
    )
    return [QueueItem(entry=entry, plan=plan) for entry, plan in rows]


def find_expired_active(db: Session, now: datetime) -> list[LedgerEntry]:
    return db.query(LedgerEntry).filter(
        LedgerEntry.status == "active",
        LedgerEntry.expiry_date <= now,
    ).order_by(LedgerEntry.expiry_date.asc(), LedgerEntry.id.asc()).all()


def find_active_with_plan(db: Session) -> list[tuple[LedgerEntry, Plan, User]]:
    return (
        db.query(LedgerEntry, Plan, User)
        .join(Plan, Plan.id == LedgerEntry.plan_id)
        .join(User, User.id == LedgerEntry.user_id)
        .filter(LedgerEntry.status == "active")
        .order_by(LedgerEntry.expiry_date.asc(), LedgerEntry.id.asc())
        .all()
    )
