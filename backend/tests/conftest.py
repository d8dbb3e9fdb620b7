"""
Pytest fixtures.

アプリのモジュールを import する前に環境変数を設定する (Settings はimport時に確定するため)。
DBは SQLite インメモリ (StaticPool) をテストごとに作り直す。
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["AES_KEY"] = "0123456789abcdef" * 4
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["ENV"] = "test"
os.environ["DEBUG"] = "false"
os.environ["FCM_ENABLED"] = "false"

import pytest
from datetime import datetime

from app.core.database import Base, SessionLocal, engine
from app.core.rate_limit import limiter
from app.models.admin import Admin
from app.models.payment import Payment
from app.models.plan import Plan
from app.services import auth_service
from app.services.payment_service import generate_transaction_id


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """テストではbcryptのコストを下げる"""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def plans(db):
    """初期5プラン (プラン名 → Plan)"""
    from add_plans import add_plans
    add_plans(db)
    return {p.name: p for p in db.query(Plan).all()}


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(password="Passw0rd1", is_active=True, fcm_token=None, **kwargs):
        counter["n"] += 1
        user = auth_service.create_user(
            db,
            mobile=kwargs.pop("mobile", f"98765{counter['n']:05d}"),
            password=password,
            full_name=kwargs.pop("full_name", f"Test User {counter['n']}"),
            is_active=is_active,
            **kwargs,
        )
        user.fcm_token = fcm_token
        db.commit()
        return user

    return _make


@pytest.fixture
def make_admin(db):
    def _make(email="admin@example.com", password="AdminPass1"):
        admin = Admin(
            email=email,
            name="Admin",
            password_hash=auth_service.hash_password(password),
            is_active=True,
        )
        db.add(admin)
        db.commit()
        return admin

    return _make


@pytest.fixture
def make_payment(db):
    """台帳テスト用の決済レコード"""

    def _make(user, plan, status="completed"):
        payment = Payment(
            user_id=user.id,
            plan_id=plan.id,
            amount=plan.price,
            currency=plan.currency,
            status=status,
            transaction_id=generate_transaction_id(),
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from app.main import app

    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        limiter.enabled = True


@pytest.fixture
def t0():
    """テスト基準時刻 (UTC naive)"""
    return datetime(2026, 3, 1, 9, 0, 0)
