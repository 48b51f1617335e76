"""Cryptographic utilities.

HTLC primitives (secret, hashlock, swap id) plus Fernet encryption for
hot-wallet keys kept in the environment.
"""

import hashlib
import hmac
import json
import logging
import secrets
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

SECRET_SIZE = 32

# Fernet tokens are base64 of a 0x80 version byte, so they start with this
FERNET_PREFIX = "gAAAAA"


def _to_bytes(value: Union[bytes, str]) -> bytes:
    """Accept raw bytes or a hex string with or without 0x."""
    if isinstance(value, bytes):
        return value
    text = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise ValueError(f"Not a hex string: {value!r}") from e


def generate_secret() -> bytes:
    """Generate a 32-byte swap secret from a CSPRNG."""
    return secrets.token_bytes(SECRET_SIZE)


def hashlock(secret: Union[bytes, str]) -> str:
    """SHA-256 commitment of a secret as 0x-prefixed hex."""
    return "0x" + hashlib.sha256(_to_bytes(secret)).hexdigest()


def verify_secret(secret: Union[bytes, str], expected_hashlock: str) -> bool:
    """Check a candidate secret against a hashlock in constant time."""
    try:
        candidate = hashlock(secret)
    except ValueError:
        return False
    return hmac.compare_digest(candidate.lower(), expected_hashlock.lower())


def secret_hex(secret: Union[bytes, str]) -> str:
    """Normalize a secret to 0x-prefixed lower-case hex."""
    return "0x" + _to_bytes(secret).hex()


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return _canonical(value.value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format(Decimal(str(value)).normalize(), "f")
    return value


def derive_swap_id(params: dict[str, Any]) -> str:
    """Deterministic swap id from swap parameters.

    Parameters are encoded as JSON with sorted keys, decimals rendered as
    plain normalized strings and 0x-prefixed values lower-cased, so the same
    parameters always produce the same id.
    """
    canonical = {key: _canonical(value) for key, value in params.items()}
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return "0x" + hashlib.sha256(encoded.encode()).hexdigest()


class KeyEncryptor:
    """Encrypts and decrypts hot-wallet keys using Fernet.

    Usage:
        encryptor = KeyEncryptor(master_key)
        encrypted = encryptor.encrypt("0xabc...")
        decrypted = encryptor.decrypt(encrypted)
    """

    def __init__(self, master_key: str):
        """Initialize with master encryption key.

        Args:
            master_key: Base64-encoded Fernet key (32 bytes)
        """
        self._fernet = Fernet(master_key.encode())

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a Fernet token.

        Raises:
            InvalidToken: If decryption fails (wrong key or corrupted data)
        """
        return self._fernet.decrypt(token.encode()).decode()


def generate_master_key() -> str:
    """Generate a new master encryption key."""
    return Fernet.generate_key().decode()


def decrypt_key(value: str, master_key: Optional[str]) -> str:
    """Decrypt a key if it is a Fernet token, otherwise return it unchanged.

    Raises:
        ValueError: If the value is encrypted but cannot be decrypted
    """
    if not value.startswith(FERNET_PREFIX):
        return value

    if not master_key:
        raise ValueError("Encrypted key found but MASTER_KEY is not set")

    try:
        return KeyEncryptor(master_key).decrypt(value)
    except InvalidToken as e:
        raise ValueError("Could not decrypt key with MASTER_KEY") from e
