from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from ..chains.base import TransferCheck
from ..db import run_in_transaction
from ..exceptions import ValidationError
from ..models import CreditLedgerEntry, Payment
from .entitlements import as_utc, ensure_user, lock_user, utc_now

logger = logging.getLogger(__name__)


def payment_identity(chain: str, txid: str) -> str:
    """Deterministic idempotency key for an on-chain transaction."""
    return f"{chain.lower()}_{txid}"


@dataclass
class SettlementResult:
    processed: bool
    payment_id: str


class PaymentSettlement:
    """Turn a verified on-chain payment into a subscription extension and credit grant, at most once per transaction."""

    def __init__(self, db: Session):
        self.db = db

    def settle(
        self,
        uid: str,
        chain: str,
        txid: str,
        transfer: TransferCheck,
        price_usdt: Union[Decimal, str, int],
        credit_grant: int,
        period_days: int,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        """
        Apply a verified transfer to the user's account.

        The existence check on the payment row and every write happen inside
        the same transaction. Two concurrent claims for one transaction id
        both reach the payment insert at most once: the loser fails on the
        primary key and its whole unit is rolled back.

        Returns:
            SettlementResult with processed=False when the transaction was
            already settled; that is a normal outcome, not an error.
        """
        if not txid:
            raise ValidationError("txid", "is required")
        if not transfer.found:
            raise ValidationError("transfer", "cannot settle an unverified transfer")

        payment_id = payment_identity(chain, txid)
        ensure_user(self.db, uid)

        def _apply(session: Session) -> bool:
            if session.get(Payment, payment_id, populate_existing=True) is not None:
                return False

            settled_at = now or utc_now()
            user = lock_user(session, uid)

            # Stack on top of any time the user still has left.
            current_end = as_utc(user.current_period_end)
            base = max(settled_at, current_end) if current_end else settled_at
            new_period_end = base + timedelta(days=period_days)

            session.add(Payment(
                id=payment_id,
                user_id=uid,
                chain=chain.upper(),
                token="USDT",
                amount_usdt=str(price_usdt),
                amount_base_units=str(transfer.amount),
                to_address=transfer.to_address,
                from_address=transfer.from_address,
                txid=txid,
                block_number=transfer.block_number,
                status="confirmed",
                created_at=settled_at,
                updated_at=settled_at,
            ))
            # Surface a concurrent insert before touching the user row.
            session.flush()

            user.plan = "pro"
            user.subscription_status = "active"
            user.monthly_credits_allowance = credit_grant
            user.current_period_end = new_period_end
            user.last_granted_period_end = new_period_end
            user.credits_balance = int(user.credits_balance or 0) + credit_grant
            user.updated_at = settled_at

            session.add(CreditLedgerEntry(
                user_id=uid,
                type="grant",
                amount=credit_grant,
                reason=f"usdt_{chain.lower()}_monthly_{price_usdt}",
                created_at=settled_at,
            ))
            return True

        try:
            processed = run_in_transaction(self.db, _apply)
        except IntegrityError:
            # Lost the race to a concurrent claim of the same transaction
            if self.db.get(Payment, payment_id, populate_existing=True) is None:
                raise
            logger.info(f"Payment {payment_id} settled concurrently by another request")
            return SettlementResult(processed=False, payment_id=payment_id)

        if processed:
            logger.info(f"Settled payment {payment_id}: +{credit_grant} credits for user {uid}")
        else:
            logger.info(f"Payment {payment_id} already settled")
        return SettlementResult(processed=processed, payment_id=payment_id)
