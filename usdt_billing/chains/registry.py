from typing import Callable, Dict, Optional

import httpx

from ..config import Settings
from ..exceptions import ValidationError
from .base import TransferVerifier
from .bep20 import Bep20Verifier
from .trc20 import Trc20Verifier

VERIFIERS: Dict[str, Callable[..., TransferVerifier]] = {
    "trc20": Trc20Verifier,
    "bep20": Bep20Verifier,
}


def get_verifier(chain: str, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> TransferVerifier:
    factory = VERIFIERS.get((chain or "").lower())
    if factory is None:
        raise ValidationError("chain", f"unsupported chain '{chain}'")
    return factory(settings, http_client=http_client)
