"""
Entitlement accounting.

Free users get a small daily quota; pro users spend a paid balance. Expiry and
the daily reset are both evaluated lazily from stored fields, so no scheduled
job is needed to keep them current.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import run_in_transaction
from ..exceptions import InsufficientCreditsError, ValidationError
from ..models import CreditLedgerEntry, User
from ..schemas import Entitlements

logger = logging.getLogger(__name__)

FREE_DAILY_LIMIT = 5
DEFAULT_SPEND_REASON = "process_image"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_date_key(now: Optional[datetime] = None) -> str:
    return (now or utc_now()).astimezone(timezone.utc).strftime("%Y-%m-%d")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some backends (SQLite) hand back naive datetimes; they are stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def effective_plan(user: User, now: datetime) -> str:
    period_end = as_utc(user.current_period_end)
    expired = bool(period_end and now > period_end)
    # Expired and out of paid credits: gate as free regardless of the stored plan.
    if expired and int(user.credits_balance or 0) <= 0:
        return "free"
    return user.plan or "free"


def lock_user(db: Session, uid: str) -> User:
    """Load a user row for update, refreshing whatever this session already holds."""
    stmt = select(User).where(User.id == uid).with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one()


def ensure_user(db: Session, uid: str) -> User:
    user = db.get(User, uid, populate_existing=True)
    if user is not None:
        return user
    user = User(
        id=uid,
        plan="free",
        credits_balance=0,
        monthly_credits_allowance=0,
        subscription_status=None,
        daily_credits_used=0,
        last_daily_reset_date=utc_date_key(),
    )
    db.add(user)
    try:
        db.commit()
        logger.info(f"Created user record for {uid}")
    except IntegrityError:
        # Another request created it first
        db.rollback()
        user = db.get(User, uid, populate_existing=True)
    return user


def compute_entitlements(user: User, now: Optional[datetime] = None, daily_limit: int = FREE_DAILY_LIMIT) -> Entitlements:
    now = now or utc_now()
    credits_balance = int(user.credits_balance or 0)
    period_end = as_utc(user.current_period_end)
    expired = bool(period_end and now > period_end)
    plan = effective_plan(user, now)

    today = utc_date_key(now)
    used = int(user.daily_credits_used or 0) if user.last_daily_reset_date == today else 0

    if plan == "free":
        remaining = max(0, daily_limit - used)
        limit = daily_limit
    else:
        remaining = max(0, credits_balance)
        limit = remaining

    return Entitlements(
        plan=plan,
        can_use=remaining > 0,
        remaining=remaining,
        limit=limit,
        credits_balance=credits_balance,
        daily_credits_used=used,
        daily_limit=daily_limit,
        subscription_status=user.subscription_status,
        current_period_end=period_end,
        subscription_expired=expired,
    )


def get_entitlements(db: Session, uid: str, now: Optional[datetime] = None, daily_limit: int = FREE_DAILY_LIMIT) -> Entitlements:
    user = ensure_user(db, uid)
    return compute_entitlements(user, now, daily_limit)


def _validate_count(count: Union[int, float]) -> int:
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        raise ValidationError("count", "must be a number")
    if not math.isfinite(count) or count <= 0:
        raise ValidationError("count", "must be a finite positive number")
    if isinstance(count, float) and not count.is_integer():
        raise ValidationError("count", "must be a whole number of credits")
    return int(count)


def consume_credits(
    db: Session,
    uid: str,
    count: Union[int, float],
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    daily_limit: int = FREE_DAILY_LIMIT,
) -> Entitlements:
    """
    Spend ``count`` credits as a single read-modify-write.

    Free plan draws on the daily quota, paid plan on the balance. Nothing is
    written unless the whole amount is available.

    Raises:
        ValidationError: count is not a finite positive whole number
        InsufficientCreditsError: not enough quota or balance left
    """
    count = _validate_count(count)
    now = now or utc_now()
    ensure_user(db, uid)

    def _consume(session: Session) -> User:
        user = lock_user(session, uid)
        # Effective rather than stored plan, so a lapsed pro user spends what /entitlements shows
        plan = effective_plan(user, now)

        if plan == "free":
            today = utc_date_key(now)
            used = int(user.daily_credits_used or 0) if user.last_daily_reset_date == today else 0
            remaining = daily_limit - used
            if remaining < count:
                raise InsufficientCreditsError(count, max(0, remaining), uid, plan)
            user.daily_credits_used = used + count
            user.last_daily_reset_date = today
        else:
            balance = int(user.credits_balance or 0)
            if balance < count:
                raise InsufficientCreditsError(count, balance, uid, plan)
            user.credits_balance = balance - count

        user.updated_at = now
        session.add(CreditLedgerEntry(
            user_id=uid, type="spend", amount=count, reason=reason or DEFAULT_SPEND_REASON, created_at=now
        ))
        return user

    user = run_in_transaction(db, _consume)
    return compute_entitlements(user, now, daily_limit)


def grant_credits(db: Session, uid: str, amount: int, reason: str = "grant") -> int:
    """Add paid credits outside of a payment settlement (support, promotions). Returns the new balance."""
    ensure_user(db, uid)
    if amount is None or amount <= 0:
        return int(db.get(User, uid).credits_balance or 0)

    def _grant(session: Session) -> int:
        user = lock_user(session, uid)
        user.credits_balance = int(user.credits_balance or 0) + amount
        user.updated_at = utc_now()
        session.add(CreditLedgerEntry(user_id=uid, type="grant", amount=amount, reason=reason or "grant"))
        return user.credits_balance

    return run_in_transaction(db, _grant)
