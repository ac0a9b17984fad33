"""
KEM backends for KyberLink.

The channel only needs three operations from a key-encapsulation mechanism.
`KemBackend` names them; `MLKem1024Backend` provides them over kyber-py's
ML-KEM-1024 (FIPS 203) implementation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Tuple

from kyber_py.ml_kem import ML_KEM_1024

from .types import (
    KEM_CIPHERTEXT_SIZE,
    KEM_PUBLIC_KEY_SIZE,
    KEM_PRIVATE_KEY_SIZE,
    InvalidCiphertextError,
    KeyDerivationError,
)

logger = logging.getLogger(__name__)


class KemBackend(ABC):
    """Abstract key-encapsulation mechanism."""

    name: str = "kem"
    ciphertext_size: int = KEM_CIPHERTEXT_SIZE

    @abstractmethod
    def generate_keypair(self) -> Tuple[bytes, bytes]:
        """Generate a key pair, returned as (public_key, private_key)."""
        pass

    @abstractmethod
    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        """Encapsulate against a public key, returned as (ciphertext, shared_secret)."""
        pass

    @abstractmethod
    def decapsulate(self, ciphertext: bytes, private_key: bytes) -> bytes:
        """Recover the shared secret from a ciphertext."""
        pass


class MLKem1024Backend(KemBackend):
    """ML-KEM-1024 via kyber-py."""

    name = "ML-KEM-1024"
    ciphertext_size = KEM_CIPHERTEXT_SIZE

    def __init__(self) -> None:
        self._kem = ML_KEM_1024

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        ek, dk = self._kem.keygen()
        logger.debug("Keys: ek=%dB dk=%dB", len(ek), len(dk))
        return ek, dk

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        if len(public_key) != KEM_PUBLIC_KEY_SIZE:
            raise KeyDerivationError(
                f"Public key must be {KEM_PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
            )
        try:
            # kyber-py returns (key, ciphertext)
            ss, ct = self._kem.encaps(bytes(public_key))
        except ValueError as e:
            raise KeyDerivationError(f"Encapsulation failed: {e}") from e
        return ct, ss

    def decapsulate(self, ciphertext: bytes, private_key: bytes) -> bytes:
        if len(ciphertext) != KEM_CIPHERTEXT_SIZE:
            raise InvalidCiphertextError(
                f"KEM ciphertext must be {KEM_CIPHERTEXT_SIZE} bytes, got {len(ciphertext)}"
            )
        if len(private_key) != KEM_PRIVATE_KEY_SIZE:
            raise KeyDerivationError(
                f"Private key must be {KEM_PRIVATE_KEY_SIZE} bytes, got {len(private_key)}"
            )
        try:
            return self._kem.decaps(bytes(private_key), bytes(ciphertext))
        except ValueError as e:
            raise InvalidCiphertextError(f"Decapsulation failed: {e}") from e

    def __repr__(self) -> str:
        return f"MLKem1024Backend({self.name})"
