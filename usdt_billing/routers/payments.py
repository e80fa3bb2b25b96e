import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..auth import current_uid
from ..chains.registry import get_verifier
from ..config import settings
from ..db import get_db
from ..exceptions import ValidationError
from ..schemas import ClaimRequest, ClaimResponse, DepositAddressOut
from ..services.deposits import DepositAddressService
from ..services.entitlements import ensure_user
from ..services.settlement import PaymentSettlement

router = APIRouter()
logger = logging.getLogger(__name__)


async def chain_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.chain_http_timeout_seconds) as client:
        yield client


async def _settle(db: Session, uid: str, chain: str, check) -> ClaimResponse:
    settlement = PaymentSettlement(db)
    result = await run_in_threadpool(
        settlement.settle,
        uid,
        chain,
        check.txid,
        check,
        settings.pro_price_usdt,
        settings.pro_monthly_credits,
        settings.pro_period_days,
    )
    return ClaimResponse(paid=True, processed=result.processed, txid=check.txid)


@router.post("/tron/deposit", response_model=DepositAddressOut)
def tron_deposit(uid: str = Depends(current_uid), db: Session = Depends(get_db)):
    """Create or fetch the caller's TRON deposit address."""
    address = DepositAddressService(db, settings).get_or_create_tron_address(uid)
    return DepositAddressOut(
        address=address,
        chain="TRC20",
        price_usdt=settings.pro_price_usdt,
        credits=settings.pro_monthly_credits,
    )


@router.post("/tron/claim", response_model=ClaimResponse, response_model_exclude_none=True)
async def tron_claim(
    payload: Optional[ClaimRequest] = None,
    uid: str = Depends(current_uid),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(chain_http_client),
):
    """Look for a payment into the caller's deposit address and settle it."""
    txid_hint = ((payload.txid if payload else None) or "").strip()

    user = await run_in_threadpool(ensure_user, db, uid)
    address = (user.tron_deposit_address or "").strip()
    if not address:
        raise ValidationError("deposit address", "no deposit address yet")

    verifier = get_verifier("trc20", settings, http_client)
    check = await verifier.verify_transfer(txid_hint or None, address, settings.pro_price_usdt)
    if not check.found:
        await run_in_threadpool(DepositAddressService(db, settings).mark_checked, uid)
        return ClaimResponse(paid=False, reason=check.reason)

    logger.info(f"TRC20 transfer {check.txid} matched for user {uid}")
    return await _settle(db, uid, "trc20", check)


@router.get("/bsc/deposit", response_model=DepositAddressOut)
def bsc_deposit(uid: str = Depends(current_uid)):
    """BEP20 payments go to one shared merchant address."""
    return DepositAddressOut(
        address=settings.merchant_bsc,
        chain="BEP20",
        price_usdt=settings.pro_price_usdt,
        credits=settings.pro_monthly_credits,
    )


@router.post("/bsc/claim", response_model=ClaimResponse, response_model_exclude_none=True)
async def bsc_claim(
    payload: ClaimRequest,
    uid: str = Depends(current_uid),
    db: Session = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(chain_http_client),
):
    """Verify a BEP20 transaction hash against the merchant address and settle it."""
    txid = (payload.txid or "").strip()
    if not txid:
        raise ValidationError("txid", "is required")

    verifier = get_verifier("bep20", settings, http_client)
    check = await verifier.verify_transfer(txid, settings.merchant_bsc, settings.pro_price_usdt)
    if not check.found:
        # pending means not mined yet; the client retries later
        return ClaimResponse(paid=False, reason=check.reason, txid=check.txid)

    logger.info(f"BEP20 transfer {check.txid} matched for user {uid}")
    return await _settle(db, uid, "bep20", check)
