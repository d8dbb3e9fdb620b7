from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SAEnum, func
from app.core.database import Base

PLAN_TIERS = ("Regular", "Premium", "International", "None")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_id = Column(String(8), unique=True, nullable=False, index=True, comment="表示用ID (8桁16進)")
    mobile = Column(String(20), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    city = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    fcm_token = Column(String(512), nullable=True, comment="プッシュ通知チャネル")

    # 購読スナップショット (台帳の active エントリのキャッシュ。台帳更新処理以外から書き込まない)
    sub_tier = Column(SAEnum(*PLAN_TIERS, name="plan_tier"), nullable=False, default="None")
    sub_start_date = Column(DateTime, nullable=True)
    sub_end_date = Column(DateTime, nullable=True)
    sub_is_active = Column(Boolean, nullable=False, default=False)
    sub_max_visible_targets = Column(Integer, nullable=False, default=2)
    sub_reminder_lead_hours = Column(Integer, nullable=False, default=2)
    sub_reminder_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    def has_active_subscription(self, now) -> bool:
        """スナップショット上で有効な購読があるか"""
        if not self.sub_is_active or not self.sub_end_date:
            return False
        return now < self.sub_end_date
