"""認証ビジネスロジック"""
import secrets
import string
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from app.models.user import User
from app.models.admin import Admin
from app.core.errors import AppError, InvalidCredential
from app.core.logging import get_logger

logger = get_logger(__name__)

BCRYPT_ROUNDS = 12
DISPLAY_ID_LENGTH = 8
DISPLAY_ID_MAX_TRIES = 10
TEMP_PASSWORD_LENGTH = 10

# 存在しないユーザーでも照合時間を揃えるためのダミーハッシュ
_DUMMY_HASH = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=4)).decode("utf-8")


def hash_password(password: str) -> str:
    """パスワードをbcryptでハッシュ化"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """パスワードを検証"""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def generate_display_id(db: Session) -> str:
    """8桁の表示用ID (大文字16進) を重複なしで採番"""
    for _ in range(DISPLAY_ID_MAX_TRIES):
        candidate = secrets.token_hex(DISPLAY_ID_LENGTH // 2).upper()
        if not db.query(User.id).filter(User.display_id == candidate).first():
            return candidate
    raise RuntimeError("display_id の採番に失敗しました")


def generate_temp_password() -> str:
    """登録同時決済フロー用の仮パスワード"""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(TEMP_PASSWORD_LENGTH))


def create_user(
    db: Session,
    mobile: str,
    password: str,
    full_name: str,
    city: Optional[str] = None,
    is_active: bool = True,
) -> User:
    """新規ユーザー作成 (flushのみ。commitは呼び出し側)"""
    display_id = generate_display_id(db)
    user = User(
        display_id=display_id,
        mobile=mobile,
        full_name=full_name,
        city=city,
        password_hash=hash_password(password),
        is_active=is_active,
    )
    db.add(user)
    db.flush()
    logger.info(f"ユーザー作成: user_id={user.id}, display_id={display_id}, is_active={is_active}")
    return user


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_mobile(db: Session, mobile: str) -> Optional[User]:
    return db.query(User).filter(User.mobile == mobile).first()


def get_admin_by_id(db: Session, admin_id: int) -> Optional[Admin]:
    return db.query(Admin).filter(Admin.id == admin_id).first()


def authenticate_user(db: Session, identifier: str, password: str) -> User:
    """
    携帯番号または表示用IDでログイン。

    Raises:
        InvalidCredential: ユーザー不在・パスワード不一致・無効化済み
    """
    identifier = identifier.strip()
    user = db.query(User).filter(
        (User.mobile == identifier) | (User.display_id == identifier.upper())
    ).first()
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredential("ユーザーが見つかりません")
    if not verify_password(password, user.password_hash):
        raise InvalidCredential(f"パスワード不一致: user_id={user.id}")
    if not user.is_active:
        raise InvalidCredential(f"無効化されたユーザー: user_id={user.id}")
    return user


def authenticate_admin(db: Session, email: str, password: str) -> Admin:
    admin = db.query(Admin).filter(Admin.email == email.strip().lower()).first()
    if admin is None:
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredential("管理者が見つかりません")
    if not verify_password(password, admin.password_hash) or not admin.is_active:
        raise InvalidCredential(f"管理者認証失敗: admin_id={admin.id}")
    return admin


def change_password(db: Session, user: User, current_password: str, new_password: str):
    """パスワード変更 (flushのみ。トークン失効と合わせて呼び出し側でcommit)"""
    if not verify_password(current_password, user.password_hash):
        raise AppError("現在のパスワードが正しくありません", code="invalid_password", status_code=400)
    user.password_hash = hash_password(new_password)
    db.flush()
    logger.info(f"パスワード変更: user_id={user.id}")
