"""
USDT on TRON (TRC20).

Each user pays into their own deposit address. TronGrid lists the most recent
USDT transfers into that address and a claim matches one of them by recipient
and exact amount, optionally narrowed to a client-supplied transaction id.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import httpx

from ..config import Settings
from ..exceptions import UpstreamError
from .base import TransferCheck, same_address

logger = logging.getLogger(__name__)

USDT_TRC20_DECIMALS = 6


def usdt_to_base_units(amount_usdt: Union[Decimal, str, int, float]) -> str:
    """Whole-cent USD amounts scale cleanly; the rounding keeps float artefacts out."""
    return str(int(round(float(amount_usdt) * 10 ** USDT_TRC20_DECIMALS)))


class Trc20Verifier:
    chain = "TRC20"

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.full_host = settings.tron_full_host.rstrip("/")
        self.api_key = settings.tron_api_key
        self.contract = settings.usdt_trc20_contract
        self.scan_limit = settings.tron_transfer_scan_limit
        self.timeout = settings.chain_http_timeout_seconds
        self.http_client = http_client

    def _headers(self) -> Dict[str, str]:
        return {"TRON-PRO-API-KEY": self.api_key} if self.api_key else {}

    async def fetch_recent_transfers_to(self, address: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        url = f"{self.full_host}/v1/accounts/{address}/transactions/trc20"
        params = {"limit": limit or self.scan_limit, "contract_address": self.contract}
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, params=params, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise UpstreamError("trongrid", str(e))

        if response.status_code >= 400:
            raise UpstreamError(
                "trongrid", f"TronGrid error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError("trongrid", f"non-JSON response: {response.text[:200]}", status_code=response.status_code)
        return (body or {}).get("data") or []

    async def verify_transfer(
        self, txid: Optional[str], expected_recipient: str, expected_amount: Union[Decimal, str, int]
    ) -> TransferCheck:
        expected = usdt_to_base_units(expected_amount)
        transfers = await self.fetch_recent_transfers_to(expected_recipient)
        logger.debug(f"TronGrid returned {len(transfers)} transfers for {expected_recipient}")

        for t in transfers:
            if txid and t.get("transaction_id") != txid:
                continue
            if same_address(t.get("to"), expected_recipient) and str(t.get("value") or "") == expected:
                return TransferCheck(
                    found=True,
                    txid=t.get("transaction_id"),
                    from_address=t.get("from"),
                    to_address=t.get("to"),
                    amount=expected,
                )

        return TransferCheck(found=False, reason="no_match", txid=txid or None)
