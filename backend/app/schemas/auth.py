import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


def validate_password_strength(password: str) -> str:
    """
    パスワード強度チェック
    - 8文字以上
    - 英字と数字を両方含む
    """
    if len(password) < 8:
        raise ValueError("パスワードは8文字以上で入力してください")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"[0-9]", password):
        raise ValueError("パスワードは英字と数字を両方含めてください")
    return password


class LoginRequest(BaseModel):
    # 携帯番号または表示用ID
    identifier: str = Field(min_length=1, max_length=20)
    password: str = Field(min_length=1, max_length=128)


class AdminLoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class SubscriptionSnapshot(BaseModel):
    tier: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool
    max_visible_targets: int
    reminder_lead_hours: int
    reminder_sent: bool

    @classmethod
    def from_user(cls, user) -> "SubscriptionSnapshot":
        return cls(
            tier=user.sub_tier,
            start_date=user.sub_start_date,
            end_date=user.sub_end_date,
            is_active=user.sub_is_active,
            max_visible_targets=user.sub_max_visible_targets,
            reminder_lead_hours=user.sub_reminder_lead_hours,
            reminder_sent=user.sub_reminder_sent,
        )


class UserInfo(BaseModel):
    id: int
    display_id: str
    mobile: str
    full_name: str
    city: Optional[str] = None
    subscription: SubscriptionSnapshot

    @classmethod
    def from_user(cls, user) -> "UserInfo":
        return cls(
            id=user.id,
            display_id=user.display_id,
            mobile=user.mobile,
            full_name=user.full_name,
            city=user.city,
            subscription=SubscriptionSnapshot.from_user(user),
        )


class AdminInfo(BaseModel):
    id: int
    email: str
    name: str


class LoginResponse(TokenPair):
    user: Optional[UserInfo] = None
    admin: Optional[AdminInfo] = None


class MessageResponse(BaseModel):
    message: str
