"""FCM送信結果の分類"""
from unittest.mock import Mock

import pytest
import requests

from app.core.config import settings
from app.services import notification_service
from app.services.notification_service import FCMNotifier, DisabledNotifier


def _notifier(response=None, error=None):
    notifier = FCMNotifier.__new__(FCMNotifier)
    notifier.project_id = "demo-project"
    notifier.timeout = 5
    notifier.session = Mock()
    if error is not None:
        notifier.session.post.side_effect = error
    else:
        notifier.session.post.return_value = response
    return notifier


def _response(status_code, body=None):
    resp = Mock(status_code=status_code)
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


def _fcm_error(status, error_code=None):
    error = {"code": 400, "status": status}
    if error_code:
        error["details"] = [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError", "errorCode": error_code}]
    return {"error": error}


def test_success_posts_v1_message():
    notifier = _notifier(_response(200, {"name": "projects/demo-project/messages/1"}))

    result = notifier.send("tok", "Title", "Body", {"entry_id": 3})

    assert result.success is True
    url = notifier.session.post.call_args.args[0]
    message = notifier.session.post.call_args.kwargs["json"]["message"]
    assert url.endswith("/projects/demo-project/messages:send")
    assert message["token"] == "tok"
    assert message["data"] == {"entry_id": "3"}


@pytest.mark.parametrize("status_code,body", [
    (404, _fcm_error("NOT_FOUND", "UNREGISTERED")),
    (400, _fcm_error("INVALID_ARGUMENT")),
    (403, _fcm_error("PERMISSION_DENIED", "SENDER_ID_MISMATCH")),
])
def test_token_errors_are_marked_invalid(status_code, body):
    result = _notifier(_response(status_code, body)).send("tok", "t", "b")
    assert result.success is False
    assert result.invalid_token is True
    assert result.retryable is False


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_server_side_errors_are_retryable(status_code):
    result = _notifier(_response(status_code, _fcm_error("UNAVAILABLE"))).send("tok", "t", "b")
    assert result.retryable is True
    assert result.invalid_token is False
    assert result.error == "UNAVAILABLE"


def test_transport_error_is_retryable():
    result = _notifier(error=requests.ConnectionError("reset")).send("tok", "t", "b")
    assert result.retryable is True


def test_non_json_error_body():
    result = _notifier(_response(401)).send("tok", "t", "b")
    assert result.success is False
    assert result.retryable is False
    assert result.error is None


def test_build_notifier_disabled_without_credentials(monkeypatch):
    monkeypatch.setattr(settings, "FCM_ENABLED", False)
    notifier = notification_service.build_notifier()

    assert isinstance(notifier, DisabledNotifier)
    assert notifier.send("tok", "t", "b").disabled is True


def test_expiry_reminder_message():
    title, body = notification_service.expiry_reminder_message("Premium Weekly", 24)
    assert title
    assert "Premium Weekly" in body
    assert "24 hours" in body
