"""ドメイン例外 (認証 / 決済・台帳 / 同時実行 / 外部依存)"""
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)

# 呼び出し元へは認証エラーの種類を区別せず返す (トークン有効性の推測防止)
REAUTH_CODE = "reauthentication_required"
REAUTH_MESSAGE = "再度ログインしてください"


class AppError(Exception):
    code = "app_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


# =========================================================
# 認証
# =========================================================

class AuthError(AppError):
    code = REAUTH_CODE
    status_code = 401


class InvalidCredential(AuthError):
    """署名・有効期限の検証に失敗"""


class UnknownToken(AuthError):
    """トークンIDがクレデンシャルストアに存在しない"""


class RevokedToken(AuthError):
    """失効済みトークン"""


class ExpiredToken(AuthError):
    """レコード上の有効期限切れ"""


# =========================================================
# 決済・台帳
# =========================================================

class UnknownTransaction(AppError):
    code = "unknown_transaction"
    status_code = 404


class InvalidPlan(AppError):
    code = "invalid_plan"
    status_code = 400


class DuplicateUser(AppError):
    code = "user_exists"
    status_code = 409


class NotFound(AppError):
    code = "not_found"
    status_code = 404


# =========================================================
# リトライ可能
# =========================================================

class ConcurrencyConflict(AppError):
    code = "concurrency_conflict"
    status_code = 409
    retryable = True


class GatewayUnavailable(AppError):
    code = "gateway_unavailable"
    status_code = 503
    retryable = True


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """AppError → JSONレスポンス"""
    if isinstance(exc, AuthError):
        # 内部では種類を記録し、外部には一律のメッセージを返す
        logger.info(f"認証エラー: {exc.__class__.__name__} path={request.url.path}")
        return JSONResponse(status_code=401, content={"detail": REAUTH_MESSAGE, "code": REAUTH_CODE})

    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message} path={request.url.path}")
    else:
        logger.warning(f"{exc.__class__.__name__}: {exc.message} path={request.url.path}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})
