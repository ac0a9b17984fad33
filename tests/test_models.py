"""Tests for wire message models."""

import base64

import pytest
from kyberlink.models import (
    ExchangeRequest,
    ExchangeResponse,
    ExchangeState,
    RemoteIdentity,
)
from kyberlink.types import FormatError
from .test_vectors import SESSION_ID


class TestRemoteIdentity:
    """Test parsing the gateway identity response."""

    def test_from_dict(self) -> None:
        identity = RemoteIdentity.from_dict(
            {"sessionID": "0123456789abcdef", "publicKey": base64.b64encode(b"key").decode()}
        )

        assert identity.session_id == "0123456789abcdef"
        assert identity.public_key == b"key"
        assert identity.short_id() == "01234567"

    def test_missing_fields(self) -> None:
        with pytest.raises(FormatError, match="sessionID"):
            RemoteIdentity.from_dict({"publicKey": "AAAA"})

        with pytest.raises(FormatError, match="publicKey"):
            RemoteIdentity.from_dict({"sessionID": SESSION_ID})

    def test_bad_base64(self) -> None:
        with pytest.raises(FormatError):
            RemoteIdentity.from_dict({"sessionID": SESSION_ID, "publicKey": "%%%"})

    def test_not_an_object(self) -> None:
        with pytest.raises(FormatError):
            RemoteIdentity.from_dict(["sessionID"])


class TestExchangeMessages:
    """Test request and response wire messages."""

    def test_request_to_dict(self) -> None:
        request = ExchangeRequest(
            session_id=SESSION_ID,
            client_public_key=b"\x01\x02",
            secret_ciphertext=b"\x03\x04",
            encrypted_data="ZW52",
        )

        assert request.to_dict() == {
            "v": 1,
            "sessionID": SESSION_ID,
            "clientPublicKey": "AQI=",
            "secretCiphertext": "AwQ=",
            "encryptedData": "ZW52",
        }

    def test_request_from_dict(self) -> None:
        request = ExchangeRequest.from_dict(
            {
                "v": 1,
                "sessionID": SESSION_ID,
                "clientPublicKey": "AQI=",
                "secretCiphertext": "AwQ=",
                "encryptedData": "ZW52",
            }
        )

        assert request.client_public_key == b"\x01\x02"
        assert request.secret_ciphertext == b"\x03\x04"

    def test_response_from_dict(self) -> None:
        response = ExchangeResponse.from_dict(
            {"v": 1, "secretCiphertext": "AwQ=", "encryptedData": "ZW52"}
        )

        assert response.secret_ciphertext == b"\x03\x04"
        assert response.encrypted_data == "ZW52"
        assert ExchangeResponse.from_dict(response.to_dict()) == response

    def test_response_version(self) -> None:
        with pytest.raises(FormatError, match="Unknown version"):
            ExchangeResponse.from_dict({"v": 2, "secretCiphertext": "", "encryptedData": ""})

        with pytest.raises(FormatError, match="Missing field: v"):
            ExchangeResponse.from_dict({"secretCiphertext": "", "encryptedData": ""})

    def test_response_field_types(self) -> None:
        with pytest.raises(FormatError, match="must be a string"):
            ExchangeResponse.from_dict({"v": 1, "secretCiphertext": 5, "encryptedData": ""})


class TestExchangeState:
    """Test exchange state helpers."""

    def test_terminal_states(self) -> None:
        assert ExchangeState.COMPLETED.is_terminal
        assert ExchangeState.FAILED.is_terminal
        assert not ExchangeState.REQUEST_SENT.is_terminal
