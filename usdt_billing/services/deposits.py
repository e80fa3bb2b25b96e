import logging
from typing import Tuple

from sqlalchemy.orm import Session
from tronpy.keys import PrivateKey

from ..config import Settings
from ..db import run_in_transaction
from .crypto import encrypt_text
from .entitlements import ensure_user, lock_user, utc_now

logger = logging.getLogger(__name__)


def generate_tron_account() -> Tuple[str, str]:
    """Return a fresh (base58 address, hex private key) pair."""
    private_key = PrivateKey.random()
    return private_key.public_key.to_base58check_address(), private_key.hex()


class DepositAddressService:
    """Per-user TRON deposit addresses, generated once and reused for every payment."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def get_or_create_tron_address(self, uid: str) -> str:
        user = ensure_user(self.db, uid)
        if user.tron_deposit_address and user.tron_deposit_priv_enc:
            return user.tron_deposit_address

        secret = self.settings.require("tron_key_encryption_secret")

        def _create(session: Session) -> str:
            # Re-check under the row lock so concurrent requests agree on one address
            locked = lock_user(session, uid)
            if locked.tron_deposit_address and locked.tron_deposit_priv_enc:
                return locked.tron_deposit_address

            address, private_key = generate_tron_account()
            locked.tron_deposit_address = address
            locked.tron_deposit_priv_enc = encrypt_text(private_key, secret)
            locked.tron_deposit_created_at = utc_now()
            locked.updated_at = utc_now()
            logger.info(f"Generated TRON deposit address {address} for user {uid}")
            return address

        return run_in_transaction(self.db, _create)

    def mark_checked(self, uid: str) -> None:
        def _touch(session: Session) -> None:
            user = lock_user(session, uid)
            user.tron_last_checked_at = utc_now()
            user.updated_at = utc_now()

        run_in_transaction(self.db, _touch)
