"""競合時リトライ"""
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.errors import ConcurrencyConflict
from app.services.concurrency import run_with_retry


def _conflict():
    return IntegrityError("INSERT INTO ledger_entries", {}, Exception("Duplicate entry"))


def test_retries_conflict_then_commits():
    db = Mock()
    func = Mock(side_effect=[_conflict(), "ok"])

    assert run_with_retry(db, func, attempts=3, backoff_base=0) == "ok"
    assert func.call_count == 2
    assert db.rollback.call_count == 1
    assert db.commit.call_count == 1


def test_exhausted_attempts_raise_concurrency_conflict():
    db = Mock()
    func = Mock(side_effect=_conflict())

    with pytest.raises(ConcurrencyConflict):
        run_with_retry(db, func, attempts=2, backoff_base=0)
    assert func.call_count == 2
    db.commit.assert_not_called()


def test_other_errors_propagate_without_retry():
    db = Mock()
    func = Mock(side_effect=KeyError("plan"))

    with pytest.raises(KeyError):
        run_with_retry(db, func, attempts=3, backoff_base=0)
    assert func.call_count == 1
    db.rollback.assert_called_once()
