from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from app.core.config import settings, validate_signing_keys
from app.core.errors import AppError, app_error_handler
from app.core.logging import setup_logging, get_logger
from app.core.security_headers import SecurityHeadersMiddleware
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers import health, auth, subscriptions, webhooks_stripe
from app.routers import plans, me, admin_subscriptions

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    validate_signing_keys()
    logger.info("アプリケーション起動")
    yield
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# レート制限設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(AppError, app_error_handler)

# --- バリデーションエラー日本語化 ---
_FIELD_JA = {
    "identifier": "携帯番号またはID",
    "mobile": "携帯番号",
    "full_name": "氏名",
    "city": "都市",
    "email": "メールアドレス",
    "password": "パスワード",
    "new_password": "新しいパスワード",
    "current_password": "現在のパスワード",
    "refresh_token": "リフレッシュトークン",
    "fcm_token": "通知トークン",
    "plan_id": "プランID",
    "user_id": "ユーザーID",
}


# 入力エラーの種類 → 表示文言
_MESSAGES = {
    "missing": "{field}は必須です",
    "string_too_short": "{field}は{min_length}文字以上で入力してください",
    "string_too_long": "{field}は{max_length}文字以下で入力してください",
    "string_pattern_mismatch": "{field}の形式が正しくありません",
    "string_type": "{field}は文字列で入力してください",
    "int_parsing": "{field}は数値で入力してください",
    "int_type": "{field}は数値で入力してください",
}


def _translate_error(err: dict) -> str:
    ctx = err.get("ctx", {})
    loc = err.get("loc", [])
    name = str(loc[-1]) if loc else ""
    field = _FIELD_JA.get(name, name)

    if err.get("type") == "value_error" and "error" in ctx:
        # field_validator で送出したメッセージをそのまま返す
        return str(ctx["error"])
    template = _MESSAGES.get(err.get("type", ""), "{field}: 入力値が不正です")
    return template.format(
        field=field,
        min_length=ctx.get("min_length", ""),
        max_length=ctx.get("max_length", ""),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [_translate_error(e) for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "、".join(messages), "code": "validation_error"})


# ミドルウェア (登録順序: 後に登録したものが先に実行される)
app.add_middleware(SecurityHeadersMiddleware)

# CORS (Bearerトークン方式のため Cookie は使わない)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ルーター登録
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(plans.router)
app.include_router(subscriptions.router)
app.include_router(webhooks_stripe.router)
app.include_router(admin_subscriptions.router)
app.include_router(me.router)
