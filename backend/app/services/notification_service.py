"""プッシュ通知サービス (Firebase Cloud Messaging HTTP v1)"""
import json
from dataclasses import dataclass
from typing import Optional

import requests
from google.oauth2 import service_account
from google.auth.transport.requests import AuthorizedSession

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_ENDPOINT = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

# 再送しても無駄なトークン側エラー
INVALID_TOKEN_ERRORS = ("UNREGISTERED", "INVALID_ARGUMENT", "SENDER_ID_MISMATCH")
RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class SendResult:
    success: bool
    retryable: bool = False
    invalid_token: bool = False
    disabled: bool = False
    error: Optional[str] = None


class FCMNotifier:
    """FCM送信クライアント。サービスアカウントJSONから生成する"""

    def __init__(self, credential_json: str, timeout: int = 10):
        key_dict = json.loads(credential_json)
        creds = service_account.Credentials.from_service_account_info(key_dict, scopes=[FCM_SCOPE])
        self.project_id = key_dict["project_id"]
        self.session = AuthorizedSession(creds)
        self.timeout = timeout

    def send(self, token: str, title: str, body: str, data: Optional[dict] = None) -> SendResult:
        message = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": {k: str(v) for k, v in (data or {}).items()},
                "android": {"priority": "high"},
            }
        }
        url = FCM_ENDPOINT.format(project_id=self.project_id)
        try:
            resp = self.session.post(url, json=message, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"FCM通信エラー: {e.__class__.__name__}")
            return SendResult(success=False, retryable=True, error=str(e))

        if resp.status_code == 200:
            return SendResult(success=True)

        error_code = _extract_error_code(resp)
        if resp.status_code == 404 or error_code in INVALID_TOKEN_ERRORS:
            logger.info(f"FCMトークン無効: status={resp.status_code}, code={error_code}")
            return SendResult(success=False, invalid_token=True, error=error_code)

        retryable = resp.status_code in RETRYABLE_STATUS
        logger.warning(f"FCM送信失敗: status={resp.status_code}, code={error_code}, retryable={retryable}")
        return SendResult(success=False, retryable=retryable, error=error_code)


class DisabledNotifier:
    """FCM無効時のダミー送信先。送信したことにはしない"""

    def send(self, token: str, title: str, body: str, data: Optional[dict] = None) -> SendResult:
        return SendResult(success=False, disabled=True)


def _extract_error_code(resp) -> Optional[str]:
    """FCMエラーレスポンスから errorCode / status を取り出す"""
    try:
        error = resp.json().get("error", {})
    except ValueError:
        return None
    for detail in error.get("details", []):
        if detail.get("errorCode"):
            return detail["errorCode"]
    return error.get("status")


def build_notifier():
    """設定から通知クライアントを生成"""
    if not settings.FCM_ENABLED or not settings.FIREBASE_CREDENTIALS_JSON:
        logger.info("FCM無効: プッシュ通知は送信されません")
        return DisabledNotifier()
    return FCMNotifier(settings.FIREBASE_CREDENTIALS_JSON, timeout=settings.GATEWAY_TIMEOUT_SECONDS)


def expiry_reminder_message(plan_name: str, hours_left: int) -> tuple[str, str]:
    """期限切れリマインダーの文面 (利用者向けのため英語)"""
    title = "Subscription Expiring Soon"
    body = (
        f"Your {plan_name} subscription will expire in {hours_left} hours. "
        f"Renew now to continue receiving trading calls."
    )
    return title, body
