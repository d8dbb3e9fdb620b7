"""
購読ライフサイクルのスイープ処理

1回のスイープで以下を行う (タイマーからは独立した純粋な処理):
1. 期限切れの active エントリを completed にし、次の pending を昇格
2. 昇格後の active エントリのうちリマインダー時刻に入ったものへ通知 (1エントリ1回)

エントリ単位で失敗を隔離し、1件の失敗でスイープ全体を止めない。
"""
import enum
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.core.timeutil import utcnow
from app.models.ledger_entry import LedgerEntry
from app.models.user import User
from app.services import ledger_service, notification_service
from app.services.concurrency import run_with_retry

logger = get_logger(__name__)


class SweepOutcome(str, enum.Enum):
    PROMOTED = "promoted"
    EXPIRED = "expired"
    REMINDER_SENT = "reminder_sent"
    NOOP = "noop"
    ERROR = "error"


@dataclass
class SweepResult:
    entry_id: int
    user_id: int
    outcome: SweepOutcome
    detail: Optional[str] = None


@dataclass
class SweepReport:
    started_at: datetime
    results: list[SweepResult] = field(default_factory=list)

    def count(self, outcome: SweepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def summary(self) -> dict:
        counts = Counter(r.outcome.value for r in self.results)
        return {o.value: counts.get(o.value, 0) for o in SweepOutcome}


def reminder_window(expiry_date: datetime, lead_hours: int, interval: timedelta) -> tuple[datetime, datetime]:
    """[発火時刻, 発火時刻 + スイープ間隔 + マージン)"""
    fire_at = expiry_date - timedelta(hours=lead_hours)
    margin = timedelta(minutes=settings.REMINDER_MARGIN_MINUTES)
    return fire_at, fire_at + interval + margin


def run_sweep(
    db: Session,
    notifier,
    now: Optional[datetime] = None,
    interval: Optional[timedelta] = None,
) -> SweepReport:
    """スイープを1回実行して結果を返す"""
    now = now or utcnow()
    interval = interval or timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES)
    report = SweepReport(started_at=now)

    _expire_and_promote(db, now, report)
    _send_reminders(db, notifier, now, interval, report)

    logger.info(f"スイープ完了: now={now.isoformat()}, results={report.summary()}")
    return report


# =========================================================
# 1. 期限切れ → 昇格
# =========================================================

def _expire_and_promote(db: Session, now: datetime, report: SweepReport):
    targets = [(e.id, e.user_id) for e in ledger_service.find_expired_active(db, now)]
    if targets:
        logger.info(f"期限切れエントリ: {len(targets)}件")

    for entry_id, user_id in targets:
        try:
            promotion = run_with_retry(
                db,
                lambda: _promote_by_id(db, entry_id, now),
                label=f"promote entry={entry_id}",
            )
        except Exception as e:
            logger.exception(f"昇格処理失敗: entry_id={entry_id}, user_id={user_id}")
            report.results.append(SweepResult(entry_id, user_id, SweepOutcome.ERROR, str(e)))
            continue

        if promotion is None:
            report.results.append(SweepResult(entry_id, user_id, SweepOutcome.NOOP, "already_processed"))
        elif promotion.promoted is not None:
            report.results.append(
                SweepResult(entry_id, user_id, SweepOutcome.PROMOTED, f"next_entry={promotion.promoted.id}")
            )
        else:
            report.results.append(SweepResult(entry_id, user_id, SweepOutcome.EXPIRED))


def _promote_by_id(db: Session, entry_id: int, now: datetime):
    entry = db.get(LedgerEntry, entry_id)
    if entry is None:
        return None
    return ledger_service.promote_next(db, entry, now)


# =========================================================
# 2. リマインダー
# =========================================================

def _send_reminders(db: Session, notifier, now: datetime, interval: timedelta, report: SweepReport):
    candidates = []
    for entry, plan, user in ledger_service.find_active_with_plan(db):
        if user.sub_reminder_sent:
            continue
        start, end = reminder_window(entry.expiry_date, plan.reminder_lead_hours, interval)
        if not (start <= now < end):
            continue
        candidates.append((entry.id, user.id, user.fcm_token, plan.name, entry.expiry_date))

    for entry_id, user_id, fcm_token, plan_name, expiry_date in candidates:
        try:
            outcome, detail = _remind_one(db, notifier, entry_id, user_id, fcm_token, plan_name, expiry_date, now)
        except Exception as e:
            db.rollback()
            logger.exception(f"リマインダー処理失敗: entry_id={entry_id}, user_id={user_id}")
            report.results.append(SweepResult(entry_id, user_id, SweepOutcome.ERROR, str(e)))
            continue
        report.results.append(SweepResult(entry_id, user_id, outcome, detail))


def _remind_one(db, notifier, entry_id, user_id, fcm_token, plan_name, expiry_date, now):
    if not fcm_token:
        return SweepOutcome.NOOP, "no_channel"

    hours_left = max(int(round((expiry_date - now).total_seconds() / 3600)), 1)
    title, body = notification_service.expiry_reminder_message(plan_name, hours_left)

    result = None
    for attempt in range(1, settings.NOTIFY_MAX_ATTEMPTS + 1):
        result = notifier.send(fcm_token, title, body, {"type": "subscription_expiry", "entry_id": entry_id})
        if result.success or not result.retryable:
            break
        logger.info(f"リマインダー再送: entry_id={entry_id}, attempt={attempt}")

    if result.disabled:
        # 送信していないのでフラグは立てない
        return SweepOutcome.NOOP, "notifier_disabled"

    def _record() -> bool:
        entry = db.get(LedgerEntry, entry_id)
        flagged = entry is not None and entry.status == "active" and ledger_service.mark_reminder_sent(db, entry)
        # フラグ更新でユーザー行を読み直すので、トークン削除はその後に行う
        if result.invalid_token:
            user = db.get(User, user_id)
            if user is not None and user.fcm_token == fcm_token:
                user.fcm_token = None
                db.flush()
        return flagged

    if not run_with_retry(db, _record, label=f"reminder entry={entry_id}"):
        logger.info(f"リマインダー対象外 (スナップショット更新済み): user_id={user_id}, entry_id={entry_id}")
        return SweepOutcome.NOOP, "superseded"

    if result.success:
        logger.info(f"リマインダー送信: user_id={user_id}, entry_id={entry_id}, hours_left={hours_left}")
        return SweepOutcome.REMINDER_SENT, "delivered"
    logger.warning(f"リマインダー配信失敗: user_id={user_id}, entry_id={entry_id}, error={result.error}")
    return SweepOutcome.REMINDER_SENT, f"failed:{result.error}"
