from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SAEnum, func
from app.core.database import Base


class Plan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, comment="プラン名")
    tier = Column(SAEnum("Regular", "Premium", "International", name="plan_tier_def"), nullable=False)
    duration_days = Column(Integer, nullable=False, comment="有効日数")
    duration_label = Column(String(50), nullable=False, comment="表示用 (例: 7 Days)")
    price = Column(Integer, nullable=False, comment="料金 (最小通貨単位ではなく主単位)")
    currency = Column(SAEnum("INR", "USD", name="plan_currency"), nullable=False, default="INR")
    max_visible_targets = Column(Integer, nullable=False, default=2, comment="閲覧可能ターゲット数")
    reminder_lead_hours = Column(Integer, nullable=False, default=24, comment="期限切れ何時間前に通知するか")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
