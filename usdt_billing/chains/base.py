from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Union


@dataclass
class TransferCheck:
    """Outcome of looking for a matching on-chain transfer."""
    found: bool
    reason: Optional[str] = None  # pending | failed | no_match
    txid: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[str] = None  # base units
    block_number: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TransferVerifier(Protocol):
    chain: str

    async def verify_transfer(
        self, txid: Optional[str], expected_recipient: str, expected_amount: Union[Decimal, str, int]
    ) -> TransferCheck: ...


def to_base_units(amount: Union[Decimal, str, int], decimals: int) -> int:
    """Exact fixed-point scaling; rejects amounts finer than the token precision."""
    scaled = Decimal(str(amount)).scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(scaled)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and str(a).lower() == str(b).lower()
