"""
Deposit-key encryption using AES-256-GCM.

Tokens are self-describing strings: ``v1:<nonce>:<tag>:<ciphertext>``, each
part base64-encoded, so they can be stored as an opaque column value.
"""

import base64
import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import ConfigurationError

VERSION = "v1"
NONCE_SIZE = 12
TAG_SIZE = 16


def _key_from_secret(secret: Optional[str]) -> bytes:
    if not secret:
        raise ConfigurationError("TRON_KEY_ENCRYPTION_SECRET", "required setting is not configured")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_text(plain: str, secret: Optional[str]) -> str:
    """
    Encrypt a secret string for storage.

    Args:
        plain: Plain text, e.g. a hex private key
        secret: Process-wide encryption secret

    Returns:
        Versioned token with a fresh random nonce
    """
    aesgcm = AESGCM(_key_from_secret(secret))
    nonce = os.urandom(NONCE_SIZE)
    sealed = aesgcm.encrypt(nonce, plain.encode("utf-8"), None)
    # cryptography appends the tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    parts = [base64.b64encode(p).decode("ascii") for p in (nonce, tag, ciphertext)]
    return ":".join([VERSION, *parts])


def decrypt_text(token: str, secret: Optional[str]) -> str:
    """Decrypt a token produced by encrypt_text. Raises ValueError if it is malformed or tampered with."""
    key = _key_from_secret(secret)
    parts = token.split(":")
    if len(parts) != 4 or parts[0] != VERSION:
        raise ValueError("Unsupported encrypted token format")
    try:
        nonce, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts[1:])
    except (ValueError, TypeError) as e:
        raise ValueError(f"Malformed encrypted token: {e}")
    try:
        plain = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise ValueError("Encrypted token failed authentication")
    return plain.decode("utf-8")
