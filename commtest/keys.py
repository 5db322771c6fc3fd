import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from dotenv import dotenv_values

from commtest.errors import KeyMaterialError
from commtest.models import RoleConfig

logger = logging.getLogger(__name__)

PRIVATE_KEY_VARIABLE = "private_key"
KEY_LENGTH = 32


def normalize_private_key(private_key_hex: str) -> bytes:
    """Decode a hex private key into exactly 32 bytes.

    Shorter keys are left-padded with zeros and longer keys keep their last
    32 bytes, which is how the peer's key tooling treats them.
    """
    cleaned = private_key_hex.strip()
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    if len(cleaned) % 2:
        raise KeyMaterialError(f"Private key has odd length ({len(cleaned)} hex chars)")
    try:
        raw = bytes.fromhex(cleaned)
    except ValueError as e:
        raise KeyMaterialError(f"Private key is not valid hex: {e}") from e

    if len(raw) < KEY_LENGTH:
        raw = raw.rjust(KEY_LENGTH, b"\x00")
    elif len(raw) > KEY_LENGTH:
        raw = raw[-KEY_LENGTH:]
    return raw


def public_key_from_private(private_key_hex: str) -> str:
    """Compressed secp256k1 public key (SEC1 hex) for a hex private key"""
    raw = normalize_private_key(private_key_hex)
    try:
        private_key = ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256K1())
    except ValueError as e:
        raise KeyMaterialError(f"Private key is out of range for secp256k1: {e}") from e
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint
    )
    return public_bytes.hex()


def read_private_key(env_file: str) -> Optional[str]:
    if not os.path.exists(env_file):
        return None
    values = dotenv_values(env_file)
    for name, value in values.items():
        if name.lower() == PRIVATE_KEY_VARIABLE and value:
            return value
    return None


def resolve_public_key(role_config: RoleConfig, env_file: str, derive: bool = False) -> str:
    """Public key a role is addressed by.

    A configured key wins unless `derive` is set; otherwise the key is derived
    from the role's env file.
    """
    if role_config.public_key and not derive:
        return role_config.public_key

    private_key = read_private_key(env_file)
    if private_key is None:
        raise KeyMaterialError(f"No {PRIVATE_KEY_VARIABLE} found in {env_file} for {role_config.role.value}")

    public_key = public_key_from_private(private_key)
    logger.info(f"Derived {role_config.role.value} public key {public_key} from {env_file}")
    return public_key
