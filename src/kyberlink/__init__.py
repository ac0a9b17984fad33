"""
KyberLink - Post-quantum encrypted gateway exchanges

Python client for the KyberLink protocol using ML-KEM-1024 + AES-256-GCM.
"""

from .keys import DerivedKeyPair, split_secret, derive_data_key, metadata_key
from .crypto import (
    encrypt_bytes,
    decrypt_bytes,
    decrypt_detached,
    encrypt_message,
    decrypt_message,
    parse_payload,
)
from .envelope import (
    Envelope,
    encode_envelope,
    decode_envelope,
    to_wire,
    from_wire,
)
from .kem import KemBackend, MLKem1024Backend
from .handshake import ChannelHandshake
from .models import (
    RemoteIdentity,
    EphemeralKeyPair,
    GatewayRequest,
    ExchangeRequest,
    ExchangeResponse,
    ExchangeState,
    SecureResponse,
)
from .transport import KyberLinkConfig, Transport, HttpTransport
from .client import KyberLinkClient
from .types import (
    PROTOCOL_VERSION,
    INFO_PREFIX,
    SHARED_SECRET_SIZE,
    SALT_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    METADATA_CIPHERTEXT_SIZE,
    KEM_CIPHERTEXT_SIZE,
    session_context,
    KyberLinkError,
    TransportError,
    InvalidCiphertextError,
    KeyDerivationError,
    FormatError,
    AuthenticationError,
    EncryptionError,
)

__version__ = "0.1.0"

__all__ = [
    # Keys
    "DerivedKeyPair",
    "split_secret",
    "derive_data_key",
    "metadata_key",
    # Crypto
    "encrypt_bytes",
    "decrypt_bytes",
    "decrypt_detached",
    "encrypt_message",
    "decrypt_message",
    "parse_payload",
    # Envelope
    "Envelope",
    "encode_envelope",
    "decode_envelope",
    "to_wire",
    "from_wire",
    # KEM
    "KemBackend",
    "MLKem1024Backend",
    "ChannelHandshake",
    # Models
    "RemoteIdentity",
    "EphemeralKeyPair",
    "GatewayRequest",
    "ExchangeRequest",
    "ExchangeResponse",
    "ExchangeState",
    "SecureResponse",
    # Transport
    "KyberLinkConfig",
    "Transport",
    "HttpTransport",
    # Client
    "KyberLinkClient",
    # Constants
    "PROTOCOL_VERSION",
    "INFO_PREFIX",
    "SHARED_SECRET_SIZE",
    "SALT_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "METADATA_CIPHERTEXT_SIZE",
    "KEM_CIPHERTEXT_SIZE",
    "session_context",
    # Errors
    "KyberLinkError",
    "TransportError",
    "InvalidCiphertextError",
    "KeyDerivationError",
    "FormatError",
    "AuthenticationError",
    "EncryptionError",
]
