"""KEM handshake steps for both legs of an exchange."""

import logging
from typing import Optional, Tuple

from .kem import KemBackend, MLKem1024Backend
from .models import EphemeralKeyPair
from .types import (
    SHARED_SECRET_SIZE,
    InvalidCiphertextError,
    KeyDerivationError,
)

logger = logging.getLogger(__name__)


class ChannelHandshake:
    """
    Runs the KEM operations of one exchange.

    open_outbound encapsulates against the gateway's key for the request leg;
    prepare_return_leg creates the ephemeral key pair the gateway encapsulates
    against for the response; open_inbound recovers the response secret.
    """

    def __init__(self, kem: Optional[KemBackend] = None) -> None:
        self.kem = kem or MLKem1024Backend()

    @property
    def ciphertext_size(self) -> int:
        return self.kem.ciphertext_size

    def open_outbound(self, remote_public_key: bytes) -> Tuple[bytes, bytes]:
        """
        Encapsulate against the remote identity's public key.

        Returns:
            Tuple of (kem_ciphertext, shared_secret)
        """
        ciphertext, secret = self.kem.encapsulate(remote_public_key)

        if len(ciphertext) != self.ciphertext_size:
            raise InvalidCiphertextError(
                f"KEM ciphertext must be {self.ciphertext_size} bytes, got {len(ciphertext)}"
            )
        _check_secret(secret)

        logger.debug("Encapsulated: ct=%dB", len(ciphertext))
        return ciphertext, secret

    def prepare_return_leg(self) -> EphemeralKeyPair:
        """Generate the ephemeral key pair for the response leg."""
        public_key, private_key = self.kem.generate_keypair()
        return EphemeralKeyPair(public_key=public_key, private_key=private_key)

    def open_inbound(self, response_ciphertext: bytes, private_key: bytes) -> bytes:
        """
        Decapsulate the response KEM ciphertext with the ephemeral private key.

        Only the leading fixed-size KEM ciphertext is used.

        Raises:
            InvalidCiphertextError: If the ciphertext is shorter than the KEM output
        """
        kem_ciphertext, _ = self.split_response_ciphertext(response_ciphertext)
        secret = self.kem.decapsulate(kem_ciphertext, private_key)
        _check_secret(secret)
        return secret

    def split_response_ciphertext(self, data: bytes) -> Tuple[bytes, bytes]:
        """Separate the fixed-size KEM ciphertext from any trailing bytes."""
        size = self.ciphertext_size
        if len(data) < size:
            raise InvalidCiphertextError(
                f"KEM ciphertext too short: {len(data)} bytes (expected {size})"
            )
        return bytes(data[:size]), bytes(data[size:])


def _check_secret(secret: bytes) -> None:
    if len(secret) != SHARED_SECRET_SIZE:
        raise KeyDerivationError(
            f"KEM produced a {len(secret)}-byte secret, expected {SHARED_SECRET_SIZE}"
        )
