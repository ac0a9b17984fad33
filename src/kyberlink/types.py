"""Type definitions and protocol constants for KyberLink."""

from typing import Optional


# Protocol constants
PROTOCOL_VERSION = 1
INFO_PREFIX = "kyberlink:v1|session="

SHARED_SECRET_SIZE = 32
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
DATA_KEY_SIZE = 32
METADATA_PLAINTEXT_SIZE = SALT_SIZE + NONCE_SIZE  # 28
METADATA_CIPHERTEXT_SIZE = NONCE_SIZE + METADATA_PLAINTEXT_SIZE + TAG_SIZE  # 56
LENGTH_PREFIX_SIZE = 2
MAX_METADATA_LENGTH = 0xFFFF

# ML-KEM-1024 sizes
KEM_CIPHERTEXT_SIZE = 1568
KEM_PUBLIC_KEY_SIZE = 1568
KEM_PRIVATE_KEY_SIZE = 3168


def session_context(session_id: str) -> bytes:
    """
    Build the session-bound context string.

    The same bytes serve as HKDF info and as AES-GCM associated data.

    Args:
        session_id: Gateway-issued session identifier

    Returns:
        Bytes of ``kyberlink:v1|session=<session_id>``
    """
    return (INFO_PREFIX + session_id).encode("utf-8")


# Exception types
class KyberLinkError(Exception):
    """Base exception for KyberLink errors."""
    pass


class TransportError(KyberLinkError):
    """Gateway unreachable, timed out, or answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class InvalidCiphertextError(KyberLinkError):
    """KEM ciphertext has the wrong length or is otherwise unusable."""
    pass


class KeyDerivationError(KyberLinkError):
    """Shared secret or key material is malformed."""
    pass


class FormatError(KyberLinkError):
    """Envelope or wire message framing is malformed."""
    pass


class AuthenticationError(KyberLinkError):
    """AEAD tag verification failed."""
    pass


class EncryptionError(KyberLinkError):
    """Message could not be sealed."""
    pass
