from sqlalchemy import (
    Column, Integer, DateTime, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, func,
)
from app.core.database import Base

LEDGER_STATUSES = ("pending", "active", "completed")


class LedgerEntry(Base):
    """購読キュー上の1プラン分。pending → active → completed の順にのみ遷移する"""

    __tablename__ = "subscription_ledger"
    __table_args__ = (
        # キュー位置の採番競合はこの制約で検出する
        UniqueConstraint("user_id", "queue_position", name="uq_ledger_user_position"),
        UniqueConstraint("payment_id", name="uq_ledger_payment"),
        Index("ix_ledger_user_status", "user_id", "status"),
        Index("ix_ledger_status_expiry", "status", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id", ondelete="RESTRICT"), nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False)
    status = Column(SAEnum(*LEDGER_STATUSES, name="ledger_status"), nullable=False, default="pending")
    queue_position = Column(Integer, nullable=False, comment="ユーザー内で1始まりの連番")
    activation_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
