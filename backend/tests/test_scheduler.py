"""スケジューラジョブ: 多重起動防止とトークン掃除"""
from datetime import timedelta
from unittest.mock import Mock

import redis

from app.core.config import settings
from app.core.timeutil import utcnow
from app.models.refresh_token import RefreshToken
from app.scheduler import subscription_sweeper, token_cleaner
from app.services import token_service


def _redis(lock_acquired=True):
    r = Mock()
    r.set.return_value = True if lock_acquired else None
    r.eval.return_value = 1
    return r


def _patch_sweeper(monkeypatch, r):
    run_sweep = Mock(return_value="report")
    monkeypatch.setattr(subscription_sweeper, "get_sync_redis", lambda: r)
    monkeypatch.setattr(subscription_sweeper, "run_sweep", run_sweep)
    monkeypatch.setattr(subscription_sweeper, "_get_notifier", lambda: Mock())
    return run_sweep


def test_sweep_runs_under_lock_and_releases_it(db, monkeypatch):
    r = _redis()
    run_sweep = _patch_sweeper(monkeypatch, r)

    assert subscription_sweeper.sweep_subscriptions() == "report"
    run_sweep.assert_called_once()
    lock_call = [c for c in r.set.call_args_list if c.kwargs.get("nx")][0]
    assert lock_call.args[0] == "lock:subscription_sweep"
    assert lock_call.kwargs["ex"] == settings.SWEEP_INTERVAL_MINUTES * 60
    r.eval.assert_called_once()


def test_sweep_skipped_while_another_run_holds_lock(db, monkeypatch):
    r = _redis(lock_acquired=False)
    run_sweep = _patch_sweeper(monkeypatch, r)

    assert subscription_sweeper.sweep_subscriptions() is None
    run_sweep.assert_not_called()
    r.eval.assert_not_called()


def test_sweep_skipped_when_redis_is_down(db, monkeypatch):
    run_sweep = _patch_sweeper(monkeypatch, _redis())

    def down():
        raise redis.ConnectionError("refused")

    monkeypatch.setattr(subscription_sweeper, "get_sync_redis", down)

    assert subscription_sweeper.sweep_subscriptions() is None
    run_sweep.assert_not_called()


def test_sweep_failure_still_releases_lock(db, monkeypatch):
    r = _redis()
    run_sweep = _patch_sweeper(monkeypatch, r)
    run_sweep.side_effect = RuntimeError("db gone")

    assert subscription_sweeper.sweep_subscriptions() is None
    r.eval.assert_called_once()


def test_purge_refresh_tokens_job(db):
    kept = token_service.issue_refresh_token(db, 1, "user")
    stale = token_service.issue_refresh_token(db, 1, "user")
    stale.record.expires_at = utcnow() - timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS + 1)
    db.commit()

    assert token_cleaner.purge_refresh_tokens() == 1
    db.expire_all()
    assert [r.id for r in db.query(RefreshToken).all()] == [kept.record.id]
