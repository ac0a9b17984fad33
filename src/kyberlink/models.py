"""Models for KyberLink identities, key pairs and wire messages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import time
import uuid

from .envelope import b64decode, b64encode
from .types import PROTOCOL_VERSION, FormatError


def _require(data: dict, key: str) -> Any:
    if not isinstance(data, dict):
        raise FormatError(f"Expected a JSON object, got {type(data).__name__}")
    value = data.get(key)
    if value is None:
        raise FormatError(f"Missing field: {key}")
    return value


def _require_str(data: dict, key: str) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise FormatError(f"Field {key} must be a string")
    return value


def _check_version(data: dict) -> int:
    version = _require(data, "v")
    if version != PROTOCOL_VERSION:
        raise FormatError(f"Unknown version: {version}")
    return version


@dataclass(frozen=True)
class RemoteIdentity:
    """The gateway's KEM public key bound to a session."""
    session_id: str
    public_key: bytes

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteIdentity":
        """Parses the ``{sessionID, publicKey}`` identity response."""
        return cls(
            session_id=_require_str(data, "sessionID"),
            public_key=b64decode(_require_str(data, "publicKey")),
        )

    def short_id(self) -> str:
        """First eight characters of the session ID, for logs."""
        return self.session_id[:8]


class EphemeralKeyPair:
    """
    One-time KEM key pair for the response leg.

    The private key is held in a mutable buffer so it can be zeroed once the
    response has been opened. Use as a context manager to wipe on exit.
    """

    def __init__(self, public_key: bytes, private_key: bytes) -> None:
        self.public_key = bytes(public_key)
        self._private_key = bytearray(private_key)

    @property
    def private_key(self) -> bytes:
        """The private key bytes (empty after wipe)."""
        return bytes(self._private_key)

    @property
    def wiped(self) -> bool:
        return len(self._private_key) == 0

    def wipe(self) -> None:
        """Zero and release the private key."""
        for i in range(len(self._private_key)):
            self._private_key[i] = 0
        self._private_key = bytearray()

    def __enter__(self) -> "EphemeralKeyPair":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"EphemeralKeyPair(public_key=<{len(self.public_key)} bytes>, wiped={self.wiped})"


@dataclass
class GatewayRequest:
    """The logical request carried inside the request envelope."""
    final_api: str
    method: str
    payload: Any
    timestamp: int
    nonce: str

    @classmethod
    def create(cls, final_api: str, method: str = "POST", payload: Any = None) -> "GatewayRequest":
        """Creates a request stamped with the current time and a fresh nonce."""
        return cls(
            final_api=final_api,
            method=method,
            payload={} if payload is None else payload,
            timestamp=int(time.time()),
            nonce=str(uuid.uuid4()),
        )

    def to_dict(self) -> dict:
        return {
            "finalApi": self.final_api,
            "method": self.method,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GatewayRequest":
        timestamp = _require(data, "timestamp")
        if not isinstance(timestamp, int):
            raise FormatError("Field timestamp must be an integer")
        return cls(
            final_api=_require_str(data, "finalApi"),
            method=_require_str(data, "method"),
            payload=data.get("payload"),
            timestamp=timestamp,
            nonce=_require_str(data, "nonce"),
        )


@dataclass(frozen=True)
class ExchangeRequest:
    """Request wire message sent to the gateway."""
    session_id: str
    client_public_key: bytes
    secret_ciphertext: bytes
    encrypted_data: str  # base64 envelope
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> dict:
        return {
            "v": self.version,
            "sessionID": self.session_id,
            "clientPublicKey": b64encode(self.client_public_key),
            "secretCiphertext": b64encode(self.secret_ciphertext),
            "encryptedData": self.encrypted_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExchangeRequest":
        version = _check_version(data)
        return cls(
            session_id=_require_str(data, "sessionID"),
            client_public_key=b64decode(_require_str(data, "clientPublicKey")),
            secret_ciphertext=b64decode(_require_str(data, "secretCiphertext")),
            encrypted_data=_require_str(data, "encryptedData"),
            version=version,
        )


@dataclass(frozen=True)
class ExchangeResponse:
    """Response wire message returned by the gateway."""
    secret_ciphertext: bytes
    encrypted_data: str  # base64
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> dict:
        return {
            "v": self.version,
            "secretCiphertext": b64encode(self.secret_ciphertext),
            "encryptedData": self.encrypted_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExchangeResponse":
        version = _check_version(data)
        return cls(
            secret_ciphertext=b64decode(_require_str(data, "secretCiphertext")),
            encrypted_data=_require_str(data, "encryptedData"),
            version=version,
        )


class ExchangeState(Enum):
    """Progress of a single request/response exchange."""
    IDLE = "idle"
    IDENTITY_FETCHED = "identity_fetched"
    ENCAPSULATED = "encapsulated"
    REQUEST_ENVELOPE_BUILT = "request_envelope_built"
    REQUEST_SENT = "request_sent"
    RESPONSE_RECEIVED = "response_received"
    RESPONSE_DECAPSULATED = "response_decapsulated"
    RESPONSE_ENVELOPE_DECODED = "response_envelope_decoded"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExchangeState.COMPLETED, ExchangeState.FAILED)


@dataclass
class SecureResponse:
    """Decrypted result of an exchange."""
    data: Any
    session_id: str
    original_response: Optional[dict] = None
    states: list[ExchangeState] = field(default_factory=list)
