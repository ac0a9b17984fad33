"""Envelope encoding and decoding for the KyberLink protocol."""

import base64
import binascii
from dataclasses import dataclass

from .types import (
    LENGTH_PREFIX_SIZE,
    MAX_METADATA_LENGTH,
    FormatError,
)


@dataclass(frozen=True)
class Envelope:
    """KyberLink message envelope."""
    metadata_ciphertext: bytes  # iv2 (12) + AES-GCM(salt || iv) incl. 16-byte tag
    payload_ciphertext: bytes  # variable (message + 16-byte tag)

    @property
    def metadata_length(self) -> int:
        """Length written into the 2-byte big-endian prefix."""
        return len(self.metadata_ciphertext)


def encode_envelope(envelope: Envelope) -> bytes:
    """
    Encode an envelope to bytes.

    Format:
        [0-1]    metadataLength (u16 big-endian)
        [2..]    metadataCiphertext (metadataLength bytes)
        [..]     payloadCiphertext (remainder)

    Args:
        envelope: Envelope to encode

    Returns:
        Encoded bytes

    Raises:
        FormatError: If the metadata block does not fit the length prefix
    """
    length = envelope.metadata_length
    if length > MAX_METADATA_LENGTH:
        raise FormatError(f"Metadata too large: {length} bytes (max {MAX_METADATA_LENGTH})")

    return (
        length.to_bytes(LENGTH_PREFIX_SIZE, "big")
        + envelope.metadata_ciphertext
        + envelope.payload_ciphertext
    )


def decode_envelope(data: bytes) -> Envelope:
    """
    Decode bytes into an envelope.

    Args:
        data: Encoded envelope bytes

    Returns:
        Decoded Envelope

    Raises:
        FormatError: If data is invalid
    """
    if len(data) < LENGTH_PREFIX_SIZE:
        raise FormatError(f"Data too short: {len(data)} bytes (minimum {LENGTH_PREFIX_SIZE})")

    length = int.from_bytes(data[:LENGTH_PREFIX_SIZE], "big")
    end = LENGTH_PREFIX_SIZE + length

    if len(data) < end:
        raise FormatError(
            f"Declared metadata length {length} exceeds available {len(data) - LENGTH_PREFIX_SIZE} bytes"
        )

    return Envelope(
        metadata_ciphertext=bytes(data[LENGTH_PREFIX_SIZE:end]),
        payload_ciphertext=bytes(data[end:]),
    )


def to_wire(envelope: Envelope) -> str:
    """Encode an envelope as standard base64 text."""
    return base64.b64encode(encode_envelope(envelope)).decode("ascii")


def from_wire(text: str) -> Envelope:
    """
    Decode base64 wire text into an envelope.

    Raises:
        FormatError: If the text is not valid base64 or the framing is invalid
    """
    return decode_envelope(b64decode(text))


def b64decode(text: str) -> bytes:
    """Strict standard-base64 decode raising FormatError."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise FormatError(f"Invalid base64: {e}") from e


def b64encode(data: bytes) -> str:
    """Standard-base64 encode to text."""
    return base64.b64encode(data).decode("ascii")

