"""
KyberLink client for encrypted gateway exchanges.

The KyberLinkClient runs one full request/response round-trip per call:
it fetches the gateway's session key, encapsulates a request secret,
seals the request, and opens the response sealed against a fresh
ephemeral key pair.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .crypto import encrypt_message, decrypt_bytes, decrypt_detached, parse_payload
from .envelope import b64decode, from_wire
from .handshake import ChannelHandshake
from .kem import KemBackend
from .models import (
    RemoteIdentity,
    GatewayRequest,
    ExchangeRequest,
    ExchangeResponse,
    ExchangeState,
    SecureResponse,
)
from .transport import Transport
from .types import (
    AuthenticationError,
    InvalidCiphertextError,
    KeyDerivationError,
    KyberLinkError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateCallback = Callable[[ExchangeState], None]


class _Exchange:
    """State tracker for one in-flight exchange."""

    def __init__(self, on_state: Optional[StateCallback] = None) -> None:
        self.state = ExchangeState.IDLE
        self.history: list[ExchangeState] = [ExchangeState.IDLE]
        self._on_state = on_state
        self._callback_failed = False

    def advance(self, state: ExchangeState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("Exchange -> %s", state.value)
        if self._on_state is not None:
            try:
                self._on_state(state)
            except Exception:
                self._callback_failed = True
                raise

    def fail(self, error: Exception) -> None:
        """Move to FAILED without letting the callback mask the original error."""
        self.state = ExchangeState.FAILED
        self.history.append(ExchangeState.FAILED)
        logger.debug("Exchange -> failed (%s)", type(error).__name__)
        # A callback that already raised is not called again
        if self._on_state is None or self._callback_failed:
            return
        try:
            self._on_state(ExchangeState.FAILED)
        except Exception as callback_error:
            logger.warning(
                "State callback raised while reporting failure: %s: %s",
                type(callback_error).__name__,
                callback_error,
            )


class KyberLinkClient:
    """
    High-level client for KyberLink gateway exchanges.

    Every call to send performs a fresh handshake; nothing is cached between
    calls, so any number of sends may run concurrently.

    Example usage:
        ```python
        async with HttpTransport(KyberLinkConfig.localhost()) as transport:
            client = KyberLinkClient(transport)

            result = await client.send("/test1", "POST", {"x": 1})
            print(result.data)

            # Independent exchanges in parallel
            results = await asyncio.gather(
                client.send("/a", "GET"),
                client.send("/b", "GET"),
            )
        ```
    """

    def __init__(
        self,
        transport: Transport,
        kem: Optional[KemBackend] = None,
    ) -> None:
        """
        Initialize the KyberLink client.

        Args:
            transport: Transport used to reach the gateway.
            kem: KEM backend (default: ML-KEM-1024).
        """
        self.transport = transport
        self.handshake = ChannelHandshake(kem)

    async def send(
        self,
        final_api: str,
        method: str = "POST",
        payload: Any = None,
        on_state: Optional[StateCallback] = None,
    ) -> SecureResponse:
        """
        Send an encrypted request through the gateway.

        Args:
            final_api: Backend path the gateway forwards to.
            method: HTTP method for the backend call.
            payload: JSON-serializable request body.
            on_state: Optional callback invoked on every state transition.

        Returns:
            SecureResponse with the decrypted backend response.

        Raises:
            TransportError: If the gateway is unreachable or rejects the request.
            InvalidCiphertextError: If the response KEM ciphertext is too short.
            FormatError: If a wire message or envelope is malformed.
            AuthenticationError: If the response fails authentication.
            KeyDerivationError: If the KEM produced unusable key material.
        """
        exchange = _Exchange(on_state)
        request = GatewayRequest.create(final_api, method, payload)

        try:
            return await self._run(exchange, request)
        except Exception as error:
            exchange.fail(error)
            raise

    async def _run(self, exchange: _Exchange, request: GatewayRequest) -> SecureResponse:
        identity_data = await self._call_transport(self.transport.fetch_remote_identity())
        identity = RemoteIdentity.from_dict(identity_data)
        exchange.advance(ExchangeState.IDENTITY_FETCHED)
        logger.info("[PHASE 1] Session: %s...", identity.short_id())

        kem_ciphertext, request_secret = self.handshake.open_outbound(identity.public_key)
        exchange.advance(ExchangeState.ENCAPSULATED)

        with self.handshake.prepare_return_leg() as return_leg:
            encrypted_data = encrypt_message(request.to_dict(), request_secret, identity.session_id)
            del request_secret

            wire_request = ExchangeRequest(
                session_id=identity.session_id,
                client_public_key=return_leg.public_key,
                secret_ciphertext=kem_ciphertext,
                encrypted_data=encrypted_data,
            )
            exchange.advance(ExchangeState.REQUEST_ENVELOPE_BUILT)

            response_data = await self._call_transport(
                self.transport.deliver(wire_request.to_dict())
            )
            exchange.advance(ExchangeState.REQUEST_SENT)

            response = ExchangeResponse.from_dict(response_data)
            exchange.advance(ExchangeState.RESPONSE_RECEIVED)
            logger.info("[PHASE 4] Encrypted response received")

            plaintext = self._open_response(
                exchange, response, return_leg.private_key, identity.session_id
            )

        data = parse_payload(plaintext)
        exchange.advance(ExchangeState.RESPONSE_ENVELOPE_DECODED)
        logger.info("[PHASE 4] Response decrypted")

        exchange.advance(ExchangeState.COMPLETED)
        return SecureResponse(
            data=data,
            session_id=identity.session_id,
            original_response=response_data,
            states=list(exchange.history),
        )

    def _open_response(
        self,
        exchange: _Exchange,
        response: ExchangeResponse,
        private_key: bytes,
        session_id: str,
    ) -> bytes:
        """Decapsulate and decrypt the response leg."""
        kem_ciphertext, detached_metadata = self.handshake.split_response_ciphertext(
            response.secret_ciphertext
        )

        # Decapsulation and decryption failures look the same to the caller
        try:
            secret = self.handshake.open_inbound(kem_ciphertext, private_key)
            exchange.advance(ExchangeState.RESPONSE_DECAPSULATED)

            if detached_metadata:
                return decrypt_detached(
                    detached_metadata,
                    b64decode(response.encrypted_data),
                    secret,
                    session_id,
                )
            return decrypt_bytes(from_wire(response.encrypted_data), secret, session_id)
        except (AuthenticationError, InvalidCiphertextError, KeyDerivationError) as e:
            logger.debug("Response rejected: %s: %s", type(e).__name__, e)
            raise AuthenticationError("Response could not be authenticated") from e

    async def _call_transport(self, call: Awaitable[T]) -> T:
        """Await a transport call, surfacing foreign failures as TransportError."""
        try:
            return await call
        except KyberLinkError:
            raise
        except Exception as e:
            raise TransportError(f"Transport failed: {type(e).__name__}: {e}") from e
