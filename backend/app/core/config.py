from pydantic_settings import BaseSettings
from typing import Optional

_DEFAULT_JWT_SECRET = "dev-secret-change-me"
_DEFAULT_JWT_REFRESH_SECRET = "dev-refresh-secret-change-me"


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データベース
    DATABASE_URL: str = "mysql+pymysql://subuser:subpassword@db:3306/subscription_service?charset=utf8mb4"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # セキュリティ
    AES_KEY: str = ""
    JWT_SECRET: str = _DEFAULT_JWT_SECRET
    JWT_REFRESH_SECRET: str = _DEFAULT_JWT_REFRESH_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_DAYS: int = 7
    JWT_REFRESH_EXPIRES_DAYS: int = 30
    REFRESH_TOKEN_RETENTION_DAYS: int = 30

    # Stripe (決済ゲートウェイ)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT_SECONDS: int = 10

    # FCM (プッシュ通知)
    FCM_ENABLED: bool = False
    FIREBASE_CREDENTIALS_JSON: Optional[str] = None

    # スケジューラ
    SWEEP_INTERVAL_MINUTES: int = 15
    REMINDER_MARGIN_MINUTES: int = 1
    NOTIFY_MAX_ATTEMPTS: int = 2
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"

    # 台帳
    LEDGER_MAX_RETRIES: int = 3

    # サービス設定
    SITE_URL: str = "http://localhost:3000"
    API_URL: str = "http://localhost:8000"
    SITE_NAME: str = "Subscription Service"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # 環境
    ENV: str = "development"
    DEBUG: bool = True

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


def validate_signing_keys(cfg: Settings = None) -> None:
    """
    起動時の署名鍵チェック。

    本番環境で JWT 秘密鍵が未設定・既定値のままなら起動を中止する。
    トークン発行時ではなく起動時に失敗させる。
    """
    cfg = cfg or settings
    missing = []
    if not cfg.JWT_SECRET:
        missing.append("JWT_SECRET")
    if not cfg.JWT_REFRESH_SECRET:
        missing.append("JWT_REFRESH_SECRET")
    if missing:
        raise RuntimeError(f"署名鍵が設定されていません: {', '.join(missing)}")

    if cfg.ENV == "production":
        if cfg.JWT_SECRET == _DEFAULT_JWT_SECRET or cfg.JWT_REFRESH_SECRET == _DEFAULT_JWT_REFRESH_SECRET:
            raise RuntimeError("本番環境で既定の署名鍵は使用できません")
        if cfg.JWT_SECRET == cfg.JWT_REFRESH_SECRET:
            raise RuntimeError("JWT_SECRET と JWT_REFRESH_SECRET は別の値にしてください")
