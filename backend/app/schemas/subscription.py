from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.schemas.auth import SubscriptionSnapshot


class PlanInfo(BaseModel):
    id: int
    name: str
    tier: str
    duration_days: int
    duration_label: str
    price: int
    currency: str
    max_visible_targets: int
    reminder_lead_hours: int

    model_config = {"from_attributes": True}


class InitiatePaymentRequest(BaseModel):
    plan_id: int


class RegisterAndPayRequest(BaseModel):
    mobile: str = Field(pattern=r"^\+?[0-9]{10,15}$")
    full_name: str = Field(min_length=1, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    plan_id: int


class InitiatePaymentResponse(BaseModel):
    transaction_id: str
    payment_url: str
    amount: int
    currency: str
    display_id: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    transaction_id: str
    status: str
    amount: int
    currency: str
    plan_name: str
    # 登録同時決済の完了時のみ (仮パスワードは1度だけ返す)
    display_id: Optional[str] = None
    temp_password: Optional[str] = None


class QueueEntryInfo(BaseModel):
    id: int
    plan_id: int
    plan_name: str
    tier: str
    duration_label: str
    status: str
    queue_position: int
    activation_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    remaining_days: Optional[int] = None

    @classmethod
    def from_item(cls, item) -> "QueueEntryInfo":
        """ledger_service.QueueItem から変換"""
        return cls(
            id=item.entry.id,
            plan_id=item.plan.id,
            plan_name=item.plan.name,
            tier=item.plan.tier,
            duration_label=item.plan.duration_label,
            status=item.entry.status,
            queue_position=item.entry.queue_position,
            activation_date=item.entry.activation_date,
            expiry_date=item.entry.expiry_date,
            remaining_days=item.remaining_days,
        )


class MySubscriptionResponse(BaseModel):
    snapshot: SubscriptionSnapshot
    queue: list[QueueEntryInfo]


class GrantPlanRequest(BaseModel):
    plan_id: int


class NotificationTokenRequest(BaseModel):
    # 空文字/null で登録解除
    fcm_token: Optional[str] = Field(default=None, max_length=512)
