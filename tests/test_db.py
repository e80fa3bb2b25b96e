import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from usdt_billing.db import run_in_transaction
from usdt_billing.exceptions import DatabaseError
from usdt_billing.models import User


def locked() -> OperationalError:
    return OperationalError("UPDATE users", {}, Exception("database is locked"))


def test_conflicts_are_retried(db_session, uid):
    attempts = []

    def unit(session):
        attempts.append(1)
        session.add(User(id=uid, plan="free", credits_balance=0, monthly_credits_allowance=0, daily_credits_used=0))
        if len(attempts) < 3:
            raise locked()
        return "done"

    assert run_in_transaction(db_session, unit) == "done"
    assert len(attempts) == 3
    assert db_session.get(User, uid) is not None


def test_persistent_conflict_gives_up(db_session):
    def unit(session):
        raise locked()

    with pytest.raises(DatabaseError):
        run_in_transaction(db_session, unit, max_attempts=2)


def test_other_database_errors_are_not_retried(db_session):
    attempts = []

    def unit(session):
        attempts.append(1)
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        run_in_transaction(db_session, unit)
    assert len(attempts) == 1
