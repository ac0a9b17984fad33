"""Tests for the exchange orchestrator."""

import asyncio
import base64

import pytest
from kyberlink.client import KyberLinkClient
from kyberlink.crypto import decrypt_message, encrypt_message
from kyberlink.handshake import ChannelHandshake
from kyberlink.kem import MLKem1024Backend
from kyberlink.models import ExchangeState, GatewayRequest
from kyberlink.transport import Transport
from kyberlink.types import (
    KEM_CIPHERTEXT_SIZE,
    AuthenticationError,
    FormatError,
    InvalidCiphertextError,
    TransportError,
)
from .gateway_stub import StubGateway
from .test_vectors import END_TO_END_PAYLOAD, SESSION_ID


HAPPY_PATH = [
    ExchangeState.IDLE,
    ExchangeState.IDENTITY_FETCHED,
    ExchangeState.ENCAPSULATED,
    ExchangeState.REQUEST_ENVELOPE_BUILT,
    ExchangeState.REQUEST_SENT,
    ExchangeState.RESPONSE_RECEIVED,
    ExchangeState.RESPONSE_DECAPSULATED,
    ExchangeState.RESPONSE_ENVELOPE_DECODED,
    ExchangeState.COMPLETED,
]


@pytest.fixture(scope="module")
def kem() -> MLKem1024Backend:
    return MLKem1024Backend()


class TestEndToEnd:
    """Full request/response exchanges against a simulated gateway."""

    def test_request_payload_recovered_by_gateway(self, kem) -> None:
        """The gateway decapsulates and recovers the exact request payload."""
        public_key, private_key = kem.generate_keypair()
        handshake = ChannelHandshake(kem)

        ciphertext, secret_a = handshake.open_outbound(public_key)
        wire = encrypt_message(END_TO_END_PAYLOAD, secret_a, SESSION_ID)

        recovered_secret = kem.decapsulate(ciphertext, private_key)
        assert recovered_secret == secret_a
        assert decrypt_message(wire, recovered_secret, SESSION_ID) == END_TO_END_PAYLOAD

    def test_send(self, kem) -> None:
        gateway = StubGateway(kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        result = asyncio.run(client.send("/test1", "POST", {"x": 1}))

        assert result.data == {"echo": {"x": 1}}
        assert result.states == HAPPY_PATH

        request = gateway.received[0]
        assert request.final_api == "/test1"
        assert request.method == "POST"
        assert request.payload == {"x": 1}
        assert isinstance(request.timestamp, int)
        assert request.nonce

    def test_state_callback(self, kem) -> None:
        client = KyberLinkClient(StubGateway(kem=kem), kem=kem)
        states: list[ExchangeState] = []

        asyncio.run(client.send("/test1", on_state=states.append))

        assert states == HAPPY_PATH[1:]

    def test_default_payload(self, kem) -> None:
        gateway = StubGateway(kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        asyncio.run(client.send("/status", "GET"))

        assert gateway.received[0].payload == {}

    def test_text_response(self, kem) -> None:
        """Non-JSON plaintext is returned as text."""
        gateway = StubGateway(handler=lambda request: "plain OK", kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        result = asyncio.run(client.send("/health", "GET"))

        assert result.data == "plain OK"

    def test_detached_response_framing(self, kem) -> None:
        gateway = StubGateway(handler=lambda request: {"ok": True}, detached=True, kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        result = asyncio.run(client.send("/test1", "POST", {"x": 1}))

        assert result.data == {"ok": True}

    def test_fresh_nonce_per_request(self, kem) -> None:
        gateway = StubGateway(kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        async def run_two():
            await client.send("/a")
            await client.send("/a")

        asyncio.run(run_two())

        assert gateway.received[0].nonce != gateway.received[1].nonce

    def test_concurrent_exchanges(self, kem) -> None:
        """Independent exchanges run in parallel without sharing state."""
        gateway = StubGateway(handler=lambda request: {"path": request.final_api}, kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        async def run_all():
            return await asyncio.gather(*(client.send(f"/item/{i}") for i in range(4)))

        results = asyncio.run(run_all())

        assert [r.data for r in results] == [{"path": f"/item/{i}"} for i in range(4)]
        assert len({r.session_id for r in results}) == 4


class FailingTransport(Transport):
    """Transport that fails at a chosen step."""

    def __init__(self, identity_error=None, deliver_error=None, identity=None, response=None):
        self.identity_error = identity_error
        self.deliver_error = deliver_error
        self.identity = identity
        self.response = response
        self.delivered = 0

    async def fetch_remote_identity(self) -> dict:
        if self.identity_error is not None:
            raise self.identity_error
        return self.identity

    async def deliver(self, request: dict) -> dict:
        self.delivered += 1
        if self.deliver_error is not None:
            raise self.deliver_error
        return self.response


class TestFailures:
    """Every failure ends the exchange in FAILED and surfaces the error."""

    @pytest.fixture
    def identity(self, kem) -> dict:
        public_key, _ = kem.generate_keypair()
        return {"sessionID": SESSION_ID, "publicKey": base64.b64encode(public_key).decode()}

    def _send(self, client: KyberLinkClient):
        states: list[ExchangeState] = []
        try:
            asyncio.run(client.send("/test1", on_state=states.append))
        finally:
            self.states = states

    def test_identity_transport_error(self, kem) -> None:
        client = KyberLinkClient(
            FailingTransport(identity_error=TransportError("Init failed", status_code=500)),
            kem=kem,
        )

        with pytest.raises(TransportError, match="Init failed"):
            self._send(client)

        assert self.states == [ExchangeState.FAILED]

    def test_deliver_transport_error_not_retried(self, kem, identity) -> None:
        transport = FailingTransport(
            identity=identity,
            deliver_error=TransportError("Gateway Error 502: bad", status_code=502, body="bad"),
        )
        client = KyberLinkClient(transport, kem=kem)

        with pytest.raises(TransportError) as exc_info:
            self._send(client)

        assert exc_info.value.status_code == 502
        assert exc_info.value.body == "bad"
        assert transport.delivered == 1
        assert self.states[-2] == ExchangeState.REQUEST_ENVELOPE_BUILT
        assert self.states[-1] == ExchangeState.FAILED

    def test_timeout_surfaces_as_transport_error(self, kem, identity) -> None:
        client = KyberLinkClient(
            FailingTransport(identity=identity, deliver_error=asyncio.TimeoutError()),
            kem=kem,
        )

        with pytest.raises(TransportError, match="TimeoutError"):
            self._send(client)

        assert self.states[-1] == ExchangeState.FAILED

    def test_malformed_identity(self, kem) -> None:
        client = KyberLinkClient(FailingTransport(identity={"sessionID": SESSION_ID}), kem=kem)

        with pytest.raises(FormatError, match="publicKey"):
            self._send(client)

    def test_malformed_response(self, kem, identity) -> None:
        client = KyberLinkClient(
            FailingTransport(identity=identity, response={"v": 1}),
            kem=kem,
        )

        with pytest.raises(FormatError):
            self._send(client)

        assert ExchangeState.REQUEST_SENT in self.states
        assert self.states[-1] == ExchangeState.FAILED

    def test_unknown_response_version(self, kem, identity) -> None:
        client = KyberLinkClient(
            FailingTransport(
                identity=identity,
                response={"v": 2, "secretCiphertext": "", "encryptedData": ""},
            ),
            kem=kem,
        )

        with pytest.raises(FormatError, match="version"):
            self._send(client)

    def test_short_response_ciphertext(self, kem, identity) -> None:
        short = base64.b64encode(b"\x00" * (KEM_CIPHERTEXT_SIZE - 1)).decode()
        client = KyberLinkClient(
            FailingTransport(
                identity=identity,
                response={"v": 1, "secretCiphertext": short, "encryptedData": "AAA="},
            ),
            kem=kem,
        )

        with pytest.raises(InvalidCiphertextError):
            self._send(client)

        assert ExchangeState.RESPONSE_DECAPSULATED not in self.states

    def test_tampered_response_payload(self, kem) -> None:
        gateway = StubGateway(kem=kem)

        def flip_last_byte(response: dict) -> dict:
            raw = bytearray(base64.b64decode(response["encryptedData"]))
            raw[-1] ^= 0x80
            return {**response, "encryptedData": base64.b64encode(bytes(raw)).decode()}

        gateway.tamper_response = flip_last_byte
        client = KyberLinkClient(gateway, kem=kem)

        with pytest.raises(AuthenticationError, match="could not be authenticated"):
            self._send(client)

        assert ExchangeState.RESPONSE_ENVELOPE_DECODED not in self.states
        assert self.states[-1] == ExchangeState.FAILED

    def test_tampered_response_ciphertext(self, kem) -> None:
        """A corrupted KEM ciphertext fails the same way as a corrupted payload."""
        gateway = StubGateway(kem=kem)

        def flip_kem_byte(response: dict) -> dict:
            raw = bytearray(base64.b64decode(response["secretCiphertext"]))
            raw[0] ^= 0x01
            return {**response, "secretCiphertext": base64.b64encode(bytes(raw)).decode()}

        gateway.tamper_response = flip_kem_byte
        client = KyberLinkClient(gateway, kem=kem)

        with pytest.raises(AuthenticationError, match="could not be authenticated"):
            self._send(client)

    def test_request_rejected_by_gateway(self, kem) -> None:
        """A reused session is refused by the gateway."""
        gateway = StubGateway(kem=kem)
        client = KyberLinkClient(gateway, kem=kem)

        async def replay_session():
            identity = await gateway.fetch_remote_identity()
            gateway.sessions.clear()

            async def stale_identity() -> dict:
                return identity

            gateway.fetch_remote_identity = stale_identity
            await client.send("/test1")

        with pytest.raises(TransportError) as exc_info:
            asyncio.run(replay_session())

        assert exc_info.value.status_code == 401


class TestStateCallbackErrors:
    """A raising state callback never masks the exchange outcome."""

    def test_callback_error_on_failed_keeps_original_error(self, kem) -> None:
        client = KyberLinkClient(
            FailingTransport(identity_error=TransportError("Init failed", status_code=503)),
            kem=kem,
        )

        def on_state(state: ExchangeState) -> None:
            if state is ExchangeState.FAILED:
                raise RuntimeError("callback broke")

        with pytest.raises(TransportError, match="Init failed"):
            asyncio.run(client.send("/test1", on_state=on_state))

    def test_callback_error_not_reported_twice(self, kem) -> None:
        client = KyberLinkClient(StubGateway(kem=kem), kem=kem)
        calls: list[ExchangeState] = []

        def on_state(state: ExchangeState) -> None:
            calls.append(state)
            if state is ExchangeState.ENCAPSULATED:
                raise RuntimeError("callback broke")

        with pytest.raises(RuntimeError, match="callback broke"):
            asyncio.run(client.send("/test1", on_state=on_state))

        assert calls == [ExchangeState.IDENTITY_FETCHED, ExchangeState.ENCAPSULATED]


class TestGatewayRequest:
    """Test request payload construction."""

    def test_create(self) -> None:
        request = GatewayRequest.create("/test1", "POST", {"x": 1})
        data = request.to_dict()

        assert set(data) == {"finalApi", "method", "payload", "timestamp", "nonce"}
        assert data["finalApi"] == "/test1"
        assert data["payload"] == {"x": 1}

    def test_round_trip_dict(self) -> None:
        request = GatewayRequest.from_dict(END_TO_END_PAYLOAD)

        assert request.final_api == "/test1"
        assert request.timestamp == 1700000000
        assert request.nonce == "abc"
        assert request.to_dict() == END_TO_END_PAYLOAD

    def test_unique_nonces(self) -> None:
        nonces = {GatewayRequest.create("/x").nonce for _ in range(50)}
        assert len(nonces) == 50
