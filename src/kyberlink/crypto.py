"""Encryption and decryption for KyberLink envelopes."""

import os
import json
import logging
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .types import (
    SALT_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    METADATA_PLAINTEXT_SIZE,
    AuthenticationError,
    EncryptionError,
    FormatError,
    session_context,
)
from .keys import split_secret, derive_data_key, metadata_key
from .envelope import Envelope, to_wire, from_wire

logger = logging.getLogger(__name__)


def encrypt_bytes(plaintext: bytes, secret: bytes, session_id: str) -> Envelope:
    """
    Encrypt raw bytes under a shared secret, bound to a session.

    Args:
        plaintext: Message bytes
        secret: 32-byte KEM shared secret
        session_id: Session identifier

    Returns:
        Envelope containing encrypted metadata and payload
    """
    pair = split_secret(secret)

    # Fresh salt and IV for every message
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(NONCE_SIZE)

    data_key = derive_data_key(pair.primary, salt, session_id)
    aad = session_context(session_id)

    payload_ciphertext = AESGCM(data_key).encrypt(iv, plaintext, aad)

    # Encrypt salt || iv with the mirror key directly
    metadata_iv = os.urandom(NONCE_SIZE)
    sealed_metadata = AESGCM(metadata_key(pair)).encrypt(metadata_iv, salt + iv, None)

    return Envelope(
        metadata_ciphertext=metadata_iv + sealed_metadata,
        payload_ciphertext=payload_ciphertext,
    )


def decrypt_bytes(envelope: Envelope, secret: bytes, session_id: str) -> bytes:
    """
    Decrypt an envelope back to raw bytes.

    Args:
        envelope: The encrypted envelope
        secret: 32-byte KEM shared secret
        session_id: Session identifier the envelope was sealed for

    Returns:
        Decrypted message bytes

    Raises:
        FormatError: If the metadata block is malformed
        AuthenticationError: If either AEAD layer fails verification
    """
    return decrypt_detached(
        envelope.metadata_ciphertext,
        envelope.payload_ciphertext,
        secret,
        session_id,
    )


def decrypt_detached(
    metadata_ciphertext: bytes,
    payload_ciphertext: bytes,
    secret: bytes,
    session_id: str,
) -> bytes:
    """
    Decrypt a payload whose metadata block travelled separately.

    Gateways that append the encrypted salt/IV to the response KEM ciphertext
    send the bare payload ciphertext on its own; this opens that layout.
    """
    pair = split_secret(secret)

    salt, iv = _open_metadata(metadata_ciphertext, metadata_key(pair))

    data_key = derive_data_key(pair.primary, salt, session_id)
    aad = session_context(session_id)

    if len(payload_ciphertext) < TAG_SIZE:
        raise FormatError(f"Payload too short: {len(payload_ciphertext)} bytes (minimum {TAG_SIZE})")

    try:
        return AESGCM(data_key).decrypt(iv, payload_ciphertext, aad)
    except InvalidTag as e:
        logger.debug("Payload tag verification failed")
        raise AuthenticationError("Payload authentication failed") from e


def _open_metadata(metadata_ciphertext: bytes, key: bytes) -> tuple[bytes, bytes]:
    """Decrypt iv2 || AES-GCM(salt || iv) into (salt, iv)."""
    if len(metadata_ciphertext) < NONCE_SIZE + TAG_SIZE:
        raise FormatError(
            f"Metadata too short: {len(metadata_ciphertext)} bytes "
            f"(minimum {NONCE_SIZE + TAG_SIZE})"
        )

    metadata_iv = metadata_ciphertext[:NONCE_SIZE]
    try:
        plaintext = AESGCM(key).decrypt(metadata_iv, metadata_ciphertext[NONCE_SIZE:], None)
    except InvalidTag as e:
        logger.debug("Metadata tag verification failed")
        raise AuthenticationError("Metadata authentication failed") from e

    if len(plaintext) != METADATA_PLAINTEXT_SIZE:
        raise FormatError(
            f"Invalid salt/IV length: {len(plaintext)} bytes (expected {METADATA_PLAINTEXT_SIZE})"
        )

    return plaintext[:SALT_SIZE], plaintext[SALT_SIZE:]


def encrypt_message(message: Any, secret: bytes, session_id: str) -> str:
    """
    Serialize and encrypt a message into its base64 wire form.

    Bytes are sealed as-is and come back through the text/bytes fallback of
    decrypt_message; every other message, strings included, is sealed as
    compact JSON so it decrypts to an equal value.

    Args:
        message: Message to encrypt
        secret: 32-byte KEM shared secret
        session_id: Session identifier

    Returns:
        Base64 envelope
    """
    return to_wire(encrypt_bytes(_serialize_message(message), secret, session_id))


def decrypt_message(wire: str, secret: bytes, session_id: str) -> Union[Any, str, bytes]:
    """
    Decrypt a base64 wire envelope and parse its payload.

    Args:
        wire: Base64 envelope
        secret: 32-byte KEM shared secret
        session_id: Session identifier

    Returns:
        Parsed JSON value, or the text / raw bytes if it is not JSON
    """
    plaintext = decrypt_bytes(from_wire(wire), secret, session_id)
    return parse_payload(plaintext)


def _serialize_message(message: Any) -> bytes:
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    try:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Message is not JSON serializable: {e}") from e


def parse_payload(data: bytes) -> Union[Any, str, bytes]:
    """Parse authenticated plaintext, falling back to text then bytes."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return data

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text
