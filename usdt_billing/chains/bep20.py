"""
USDT on BNB Smart Chain (BEP20).

A claim names one transaction hash. Its receipt is fetched over JSON-RPC and
the ``Transfer`` events emitted by the USDT contract are scanned for one that
pays the expected recipient the exact expected amount.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import httpx

from ..config import Settings
from ..exceptions import UpstreamError, ValidationError
from .base import TransferCheck, same_address, to_base_units

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def decode_transfer_log(log: Dict[str, Any]) -> Dict[str, Any]:
    """Decode an ERC20 Transfer log into from/to/value. Raises ValueError for anything else."""
    topics = log.get("topics") or []
    if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
        raise ValueError("not a Transfer event")
    data = str(log.get("data") or "")
    if not data.startswith("0x") or len(data) != 66:
        raise ValueError(f"unexpected data length for Transfer value: {data!r}")
    return {
        "from": _topic_to_address(topics[1]),
        "to": _topic_to_address(topics[2]),
        "value": int(data, 16),
    }


def _topic_to_address(topic: str) -> str:
    word = str(topic).lower()
    if not word.startswith("0x") or len(word) != 66 or int(word[2:26] or "0", 16) != 0:
        raise ValueError(f"topic is not an address: {topic!r}")
    int(word[26:], 16)
    return "0x" + word[26:]


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(str(value), 16)


class Bep20Verifier:
    chain = "BEP20"

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.rpc_url = settings.bsc_rpc_url
        self.contract = settings.usdt_bep20_contract.lower()
        self.decimals = settings.usdt_bep20_decimals
        self.timeout = settings.chain_http_timeout_seconds
        self.http_client = http_client

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.rpc_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError("bsc-rpc", str(e))

        if response.status_code >= 400:
            raise UpstreamError("bsc-rpc", response.text[:200], status_code=response.status_code)
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError("bsc-rpc", f"non-JSON response: {response.text[:200]}", status_code=response.status_code)
        if body.get("error"):
            raise UpstreamError("bsc-rpc", str(body["error"])[:200], status_code=response.status_code)
        return body.get("result")

    async def get_receipt(self, txid: str) -> Optional[Dict[str, Any]]:
        return await self._rpc("eth_getTransactionReceipt", [txid])

    async def verify_transfer(
        self, txid: Optional[str], expected_recipient: str, expected_amount: Union[Decimal, str, int]
    ) -> TransferCheck:
        if not txid:
            raise ValidationError("txid", "is required")
        txid = txid.strip()
        if not TX_HASH_RE.match(txid):
            raise ValidationError("txid", "must be 0x followed by 64 hex characters")
        expected_value = to_base_units(expected_amount, self.decimals)

        receipt = await self.get_receipt(txid)
        # Hashes are case-insensitive on the node; one canonical form keys the payment
        txid = str((receipt or {}).get("transactionHash") or txid).lower()
        if not receipt:
            return TransferCheck(found=False, reason="pending", txid=txid)
        if _hex_to_int(receipt.get("status")) != 1:
            return TransferCheck(found=False, reason="failed", txid=txid)

        block_number = _hex_to_int(receipt.get("blockNumber"))
        for log in receipt.get("logs") or []:
            if not log or not log.get("address"):
                continue
            if str(log["address"]).lower() != self.contract:
                continue
            try:
                transfer = decode_transfer_log(log)
            except (ValueError, TypeError) as e:
                logger.debug(f"Skipping undecodable log in {txid}: {e}")
                continue

            if same_address(transfer["to"], expected_recipient) and transfer["value"] == expected_value:
                return TransferCheck(
                    found=True,
                    txid=txid,
                    from_address=transfer["from"],
                    to_address=transfer["to"],
                    amount=str(transfer["value"]),
                    block_number=block_number,
                )

        return TransferCheck(found=False, reason="no_match", txid=txid)
