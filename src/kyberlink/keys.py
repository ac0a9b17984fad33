"""Key separation and derivation for KyberLink."""

from dataclasses import dataclass

from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.hashes import SHA256

from .types import (
    SHARED_SECRET_SIZE,
    SALT_SIZE,
    DATA_KEY_SIZE,
    KeyDerivationError,
    session_context,
)


@dataclass(frozen=True)
class DerivedKeyPair:
    """The two operational keys obtained from one shared secret."""
    primary: bytes  # 32 bytes, HKDF input for the payload key
    mirror: bytes  # 32 bytes, byte-reversal of primary, used directly for metadata


def split_secret(secret: bytes) -> DerivedKeyPair:
    """
    Split a KEM shared secret into its primary and mirror keys.

    The mirror is the exact byte-reversal of the secret.

    Args:
        secret: 32-byte shared secret

    Returns:
        DerivedKeyPair

    Raises:
        KeyDerivationError: If the secret is not 32 bytes
    """
    if len(secret) != SHARED_SECRET_SIZE:
        raise KeyDerivationError(
            f"Shared secret must be {SHARED_SECRET_SIZE} bytes, got {len(secret)}"
        )

    primary = bytes(secret)
    return DerivedKeyPair(primary=primary, mirror=primary[::-1])


def derive_data_key(primary: bytes, salt: bytes, session_id: str) -> bytes:
    """
    Derive the AES-256-GCM payload key using HKDF-SHA256.

    Args:
        primary: 32-byte primary key from split_secret
        salt: 16-byte random salt
        session_id: Session identifier bound into the HKDF info

    Returns:
        32-byte AES key
    """
    if len(primary) != SHARED_SECRET_SIZE:
        raise KeyDerivationError(
            f"Primary key must be {SHARED_SECRET_SIZE} bytes, got {len(primary)}"
        )
    if len(salt) != SALT_SIZE:
        raise KeyDerivationError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")

    hkdf = HKDF(
        algorithm=SHA256(),
        length=DATA_KEY_SIZE,
        salt=salt,
        info=session_context(session_id),
    )
    return hkdf.derive(primary)


def metadata_key(pair: DerivedKeyPair) -> bytes:
    """Raw AES-256 key protecting the salt/IV block."""
    return pair.mirror[:SHARED_SECRET_SIZE]
