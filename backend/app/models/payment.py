from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, Enum as SAEnum, ForeignKey, func
from app.core.database import Base

PAYMENT_STATUSES = ("pending", "completed", "failed")
TERMINAL_PAYMENT_STATUSES = ("completed", "failed")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(SAEnum(*PAYMENT_STATUSES, name="payment_status"), nullable=False, default="pending", index=True)
    transaction_id = Column(String(64), unique=True, nullable=False, comment="冪等キー (自社採番)")
    gateway_transaction_id = Column(String(255), nullable=True, comment="決済成功時のゲートウェイ側ID")
    is_new_user = Column(Boolean, nullable=False, default=False, comment="登録同時決済フロー")
    temp_password_enc = Column(Text, nullable=True, comment="仮パスワード (AES-GCM)")
    granted_by_admin_id = Column(Integer, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
