"""決済イベント処理: 冪等性・Webhook/照会の収束・登録同時決済"""
import pytest

from app.core.errors import UnknownTransaction, GatewayUnavailable, DuplicateUser, InvalidCredential
from app.models.ledger_entry import LedgerEntry
from app.models.payment import Payment
from app.services import auth_service, payment_service, stripe_service
from app.services.payment_service import PAYMENT_SUCCESS, PAYMENT_ERROR, PAYMENT_DECLINED, PAYMENT_PENDING
from app.services.stripe_service import GatewayStatus

CHECKOUT_URL = "https://checkout.stripe.test/c/pay/cs_test_1"


@pytest.fixture
def gateway(monkeypatch):
    """Stripe呼び出しを差し替える"""
    calls = {"initiate": [], "status": GatewayStatus(state=stripe_service.GATEWAY_PENDING)}

    def fake_initiate(**kwargs):
        calls["initiate"].append(kwargs)
        return CHECKOUT_URL

    def fake_check_status(transaction_id):
        status = calls["status"]
        if isinstance(status, Exception):
            raise status
        return status

    monkeypatch.setattr(stripe_service, "initiate", fake_initiate)
    monkeypatch.setattr(stripe_service, "check_status", fake_check_status)
    return calls


def _pending_payment(db, user, plan):
    return payment_service.initiate_payment(db, user, plan.id).payment


def test_initiate_payment_creates_pending_record(db, plans, make_user, gateway):
    user = make_user()
    plan = plans["Premium Weekly"]

    result = payment_service.initiate_payment(db, user, plan.id)

    assert result.payment_url == CHECKOUT_URL
    assert result.payment.status == "pending"
    assert result.payment.amount == 999
    assert result.payment.transaction_id.startswith("TXN_")
    assert gateway["initiate"][0]["transaction_id"] == result.payment.transaction_id
    assert gateway["initiate"][0]["amount"] == 999


def test_initiate_payment_marks_failed_when_gateway_down(db, plans, make_user, monkeypatch):
    user = make_user()

    def down(**kwargs):
        raise GatewayUnavailable("timeout")

    monkeypatch.setattr(stripe_service, "initiate", down)

    with pytest.raises(GatewayUnavailable):
        payment_service.initiate_payment(db, user, plans["Regular Daily"].id)
    assert db.query(Payment).one().status == "failed"


def test_success_is_applied_once(db, plans, make_user, gateway):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])

    payment_service.on_payment_result(db, payment.transaction_id, PAYMENT_SUCCESS, "pi_1")
    payment_service.on_payment_result(db, payment.transaction_id, PAYMENT_SUCCESS, "pi_1")

    db.refresh(payment)
    assert payment.status == "completed"
    assert payment.gateway_transaction_id == "pi_1"
    entries = db.query(LedgerEntry).all()
    assert len(entries) == 1
    assert entries[0].payment_id == payment.id
    assert entries[0].status == "active"


@pytest.mark.parametrize("code", [PAYMENT_ERROR, PAYMENT_DECLINED])
def test_failure_has_no_ledger_effect_and_is_terminal(db, plans, make_user, gateway, code):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])

    payment_service.on_payment_result(db, payment.transaction_id, code)
    payment_service.on_payment_result(db, payment.transaction_id, PAYMENT_SUCCESS, "pi_late")

    db.refresh(payment)
    assert payment.status == "failed"
    assert db.query(LedgerEntry).count() == 0


def test_pending_code_leaves_payment_pending(db, plans, make_user, gateway):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])

    payment_service.on_payment_result(db, payment.transaction_id, PAYMENT_PENDING)

    db.refresh(payment)
    assert payment.status == "pending"


def test_unknown_transaction(db):
    with pytest.raises(UnknownTransaction):
        payment_service.on_payment_result(db, "TXN_0_DOESNOTEXIST", PAYMENT_SUCCESS)
    with pytest.raises(UnknownTransaction):
        payment_service.poll_status(db, "TXN_0_DOESNOTEXIST")


def test_poll_then_webhook_converge_on_one_entry(db, plans, make_user, gateway):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])
    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_COMPLETED, gateway_transaction_id="pi_9")

    view = payment_service.poll_status(db, payment.transaction_id)
    assert view.payment.status == "completed"

    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "client_reference_id": payment.transaction_id,
            "payment_status": "paid",
            "payment_intent": "pi_9",
        }},
    }
    payment_service.apply_gateway_event(db, event)

    assert db.query(LedgerEntry).count() == 1


def test_webhook_then_poll_does_not_query_gateway(db, plans, make_user, gateway, monkeypatch):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])
    payment_service.on_payment_result(db, payment.transaction_id, PAYMENT_SUCCESS, "pi_2")

    def must_not_call(transaction_id):
        raise AssertionError("completed payment must not be polled")

    monkeypatch.setattr(stripe_service, "check_status", must_not_call)
    view = payment_service.poll_status(db, payment.transaction_id)

    assert view.payment.status == "completed"
    assert view.plan.name == "Regular Weekly"
    assert view.temp_password is None


def test_poll_gateway_unavailable_keeps_pending(db, plans, make_user, gateway):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])
    gateway["status"] = GatewayUnavailable("connection reset")

    with pytest.raises(GatewayUnavailable):
        payment_service.poll_status(db, payment.transaction_id)

    db.refresh(payment)
    assert payment.status == "pending"
    assert db.query(LedgerEntry).count() == 0


def test_poll_failed_status_marks_failed(db, plans, make_user, gateway):
    user = make_user()
    payment = _pending_payment(db, user, plans["Regular Weekly"])
    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_FAILED)

    view = payment_service.poll_status(db, payment.transaction_id)

    assert view.payment.status == "failed"


def test_register_and_pay_enables_user_and_returns_temp_password_once(db, plans, gateway):
    result = payment_service.register_and_pay(
        db, mobile="9123456789", full_name="New Trader", plan_id=plans["Premium Daily"].id, city="Pune",
    )
    user = auth_service.get_user_by_mobile(db, "9123456789")
    assert user.is_active is False
    assert result.display_id == user.display_id
    assert result.payment.is_new_user is True
    assert result.payment.temp_password_enc

    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_COMPLETED, gateway_transaction_id="pi_new")
    first = payment_service.poll_status(db, result.payment.transaction_id)
    second = payment_service.poll_status(db, result.payment.transaction_id)

    assert first.temp_password
    assert first.display_id == user.display_id
    assert second.temp_password is None
    db.refresh(user)
    assert user.is_active is True
    assert user.sub_is_active is True
    assert auth_service.authenticate_user(db, user.display_id, first.temp_password).id == user.id


def test_register_and_pay_rejects_existing_account(db, plans, make_user, gateway):
    make_user(mobile="9000000000")
    with pytest.raises(DuplicateUser):
        payment_service.register_and_pay(db, mobile="9000000000", full_name="Dup", plan_id=plans["Regular Daily"].id)


def test_register_and_pay_can_retry_after_unfinished_attempt(db, plans, gateway):
    plan_id = plans["Regular Daily"].id
    first = payment_service.register_and_pay(db, mobile="9111111111", full_name="Retry", plan_id=plan_id)
    payment_service.on_payment_result(db, first.payment.transaction_id, PAYMENT_ERROR)

    second = payment_service.register_and_pay(db, mobile="9111111111", full_name="Retry", plan_id=plan_id)

    assert second.display_id == first.display_id
    assert second.payment.transaction_id != first.payment.transaction_id


def test_admin_grant_goes_through_ledger(db, plans, make_user, make_admin, make_payment):
    user = make_user()
    admin = make_admin()
    plan = plans["International Weekly"]

    first = payment_service.grant_plan(db, admin.id, user.id, plan.id)
    second = payment_service.grant_plan(db, admin.id, user.id, plans["Regular Daily"].id)

    assert first.status == "active"
    assert second.status == "pending"
    assert second.queue_position == 2
    grants = db.query(Payment).filter(Payment.granted_by_admin_id == admin.id).all()
    assert len(grants) == 2
    assert all(p.amount == 0 and p.status == "completed" for p in grants)
    assert all(p.transaction_id.startswith("ADMIN_") for p in grants)
    db.refresh(user)
    assert user.sub_tier == "International"


def test_register_and_pay_rejects_second_attempt_while_first_pending(db, plans, gateway):
    plan_id = plans["Regular Weekly"].id
    first = payment_service.register_and_pay(db, mobile="9222222222", full_name="First Try", plan_id=plan_id)

    with pytest.raises(DuplicateUser):
        payment_service.register_and_pay(db, mobile="9222222222", full_name="Someone Else", plan_id=plan_id)

    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_COMPLETED, gateway_transaction_id="pi_first")
    view = payment_service.poll_status(db, first.payment.transaction_id)

    user = auth_service.get_user_by_mobile(db, "9222222222")
    assert user.full_name == "First Try"
    assert db.query(Payment).filter(Payment.user_id == user.id).count() == 1
    assert auth_service.authenticate_user(db, "9222222222", view.temp_password).id == user.id


def test_completed_registration_logs_in_with_that_payments_temp_password(db, plans, gateway):
    result = payment_service.register_and_pay(
        db, mobile="9333333333", full_name="Late Pay", plan_id=plans["Regular Daily"].id,
    )
    user = auth_service.get_user_by_mobile(db, "9333333333")
    user.password_hash = auth_service.hash_password("Elsewhere9")
    db.commit()

    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_COMPLETED, gateway_transaction_id="pi_late")
    view = payment_service.poll_status(db, result.payment.transaction_id)

    assert auth_service.authenticate_user(db, "9333333333", view.temp_password).id == user.id
    with pytest.raises(InvalidCredential):
        auth_service.authenticate_user(db, "9333333333", "Elsewhere9")


def test_admin_grant_enables_inactive_user(db, plans, make_user, make_admin):
    user = make_user(is_active=False)

    entry = payment_service.grant_plan(db, make_admin().id, user.id, plans["Premium Daily"].id)

    db.refresh(user)
    assert entry.status == "active"
    assert user.is_active is True
    assert user.sub_is_active is True
    assert auth_service.authenticate_user(db, user.mobile, "Passw0rd1").id == user.id


def test_registration_granted_before_payment_does_not_hand_out_temp_password(db, plans, make_admin, gateway):
    result = payment_service.register_and_pay(
        db, mobile="9444444444", full_name="Granted", plan_id=plans["Regular Daily"].id,
    )
    user = auth_service.get_user_by_mobile(db, "9444444444")
    payment_service.grant_plan(db, make_admin().id, user.id, plans["Premium Daily"].id)

    gateway["status"] = GatewayStatus(state=stripe_service.GATEWAY_COMPLETED, gateway_transaction_id="pi_after")
    view = payment_service.poll_status(db, result.payment.transaction_id)

    assert view.payment.status == "completed"
    assert view.temp_password is None
    assert db.query(LedgerEntry).filter(LedgerEntry.user_id == user.id).count() == 2
