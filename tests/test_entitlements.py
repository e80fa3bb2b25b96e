import math
import pytest
from datetime import timedelta

from sqlalchemy.orm import Session

from usdt_billing.exceptions import InsufficientCreditsError, ValidationError
from usdt_billing.models import CreditLedgerEntry, User
from usdt_billing.services.entitlements import (
    compute_entitlements,
    consume_credits,
    ensure_user,
    get_entitlements,
    grant_credits,
    utc_date_key,
)


def reload(db: Session, uid: str) -> User:
    return db.get(User, uid, populate_existing=True)


def spends(db: Session, uid: str):
    return db.query(CreditLedgerEntry).filter(
        CreditLedgerEntry.user_id == uid, CreditLedgerEntry.type == "spend"
    ).all()


class TestComputeEntitlements:

    def test_new_user_gets_free_daily_quota(self, db_session: Session, uid):
        ent = get_entitlements(db_session, uid)

        assert ent.plan == "free"
        assert ent.remaining == 5
        assert ent.limit == 5
        assert ent.can_use is True
        assert ent.credits_balance == 0
        assert reload(db_session, uid).last_daily_reset_date == utc_date_key()

    def test_ensure_user_does_not_overwrite_existing_record(self, db_session: Session, make_user, uid):
        make_user(uid, plan="pro", credits_balance=42)
        user = ensure_user(db_session, uid)
        assert user.plan == "pro"
        assert user.credits_balance == 42

    def test_stale_reset_date_counts_as_zero_usage_without_writing(self, db_session: Session, make_user, uid, now):
        yesterday = utc_date_key(now - timedelta(days=1))
        make_user(uid, daily_credits_used=5, last_daily_reset_date=yesterday)

        ent = compute_entitlements(reload(db_session, uid), now)

        assert ent.remaining == 5
        assert ent.daily_credits_used == 0
        stored = reload(db_session, uid)
        assert stored.daily_credits_used == 5
        assert stored.last_daily_reset_date == yesterday

    def test_same_day_usage_reduces_remaining(self, db_session: Session, make_user, uid, now):
        make_user(uid, daily_credits_used=4, last_daily_reset_date=utc_date_key(now))
        ent = compute_entitlements(reload(db_session, uid), now)
        assert ent.remaining == 1
        assert ent.can_use is True

    def test_expired_pro_without_balance_is_treated_as_free(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", subscription_status="active", credits_balance=0,
                  current_period_end=now - timedelta(days=1))

        ent = compute_entitlements(reload(db_session, uid), now)

        assert ent.plan == "free"
        assert ent.subscription_expired is True
        assert ent.remaining == 5

    def test_expired_pro_with_leftover_balance_keeps_spending_it(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", credits_balance=12, current_period_end=now - timedelta(days=1))

        ent = compute_entitlements(reload(db_session, uid), now)

        assert ent.plan == "pro"
        assert ent.subscription_expired is True
        assert ent.remaining == 12
        assert ent.limit == 12

    def test_active_pro_view_is_balance(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", credits_balance=0, current_period_end=now + timedelta(days=3))
        ent = compute_entitlements(reload(db_session, uid), now)
        assert ent.plan == "pro"
        assert ent.remaining == 0
        assert ent.can_use is False


class TestConsumeCredits:

    def test_stale_day_resets_then_counts(self, db_session: Session, make_user, uid, now):
        make_user(uid, daily_credits_used=5, last_daily_reset_date=utc_date_key(now - timedelta(days=1)))

        ent = consume_credits(db_session, uid, 1, "blur", now=now)

        assert ent.remaining == 4
        stored = reload(db_session, uid)
        assert stored.daily_credits_used == 1
        assert stored.last_daily_reset_date == utc_date_key(now)
        assert [(e.type, e.amount, e.reason) for e in spends(db_session, uid)] == [("spend", 1, "blur")]

    def test_insufficient_daily_quota_leaves_usage_untouched(self, db_session: Session, make_user, uid, now):
        make_user(uid, daily_credits_used=3, last_daily_reset_date=utc_date_key(now))

        with pytest.raises(InsufficientCreditsError) as exc_info:
            consume_credits(db_session, uid, 5, now=now)

        assert exc_info.value.code == "insufficient_credits"
        assert exc_info.value.details["available_credits"] == 2
        assert reload(db_session, uid).daily_credits_used == 3
        assert spends(db_session, uid) == []

    def test_quota_can_be_used_up_exactly(self, db_session: Session, make_user, uid, now):
        make_user(uid, daily_credits_used=0, last_daily_reset_date=utc_date_key(now))
        ent = consume_credits(db_session, uid, 5, now=now)
        assert ent.remaining == 0
        assert ent.can_use is False
        with pytest.raises(InsufficientCreditsError):
            consume_credits(db_session, uid, 1, now=now)

    def test_paid_plan_spends_balance(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", credits_balance=10, current_period_end=now + timedelta(days=5))

        ent = consume_credits(db_session, uid, 3, now=now)

        assert ent.plan == "pro"
        assert ent.remaining == 7
        stored = reload(db_session, uid)
        assert stored.credits_balance == 7
        assert stored.daily_credits_used == 0
        assert spends(db_session, uid)[0].reason == "process_image"

    def test_paid_plan_insufficient_balance(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", credits_balance=2, current_period_end=now + timedelta(days=5))

        with pytest.raises(InsufficientCreditsError):
            consume_credits(db_session, uid, 3, now=now)

        assert reload(db_session, uid).credits_balance == 2
        assert spends(db_session, uid) == []

    def test_lapsed_pro_falls_back_to_daily_quota(self, db_session: Session, make_user, uid, now):
        make_user(uid, plan="pro", credits_balance=0, current_period_end=now - timedelta(days=1),
                  last_daily_reset_date=utc_date_key(now))

        ent = consume_credits(db_session, uid, 2, now=now)

        assert ent.plan == "free"
        assert ent.remaining == 3
        assert reload(db_session, uid).credits_balance == 0

    @pytest.mark.parametrize("count", [0, -1, 1.5, math.nan, math.inf, True, "3"])
    def test_invalid_count_is_rejected_without_mutation(self, db_session: Session, make_user, uid, now, count):
        make_user(uid, daily_credits_used=0, last_daily_reset_date=utc_date_key(now))

        with pytest.raises(ValidationError):
            consume_credits(db_session, uid, count, now=now)

        assert reload(db_session, uid).daily_credits_used == 0
        assert spends(db_session, uid) == []

    def test_whole_float_count_is_accepted(self, db_session: Session, make_user, uid, now):
        make_user(uid, last_daily_reset_date=utc_date_key(now))
        assert consume_credits(db_session, uid, 2.0, now=now).remaining == 3


class TestGrantCredits:

    def test_grant_adds_balance_and_ledger_entry(self, db_session: Session, uid):
        assert grant_credits(db_session, uid, 50, "support") == 50
        assert grant_credits(db_session, uid, 25, "support") == 75
        grants = db_session.query(CreditLedgerEntry).filter(CreditLedgerEntry.user_id == uid).all()
        assert sorted(g.amount for g in grants) == [25, 50]

    def test_non_positive_grant_is_noop(self, db_session: Session, make_user, uid):
        make_user(uid, credits_balance=9)
        assert grant_credits(db_session, uid, 0) == 9
        assert db_session.query(CreditLedgerEntry).count() == 0
