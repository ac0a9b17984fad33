"""
Transport interfaces for reaching a KyberLink gateway.

`Transport` is the abstract collaborator the client talks to. `HttpTransport`
implements it over HTTP with httpx; tests and other deployments can supply
their own implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional
import json
import logging

import httpx

from .types import FormatError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class KyberLinkConfig:
    """Configuration for gateway connections."""

    gateway_url: str
    """Base URL of the gateway."""

    timeout: float = 30.0
    """Total timeout in seconds for each HTTP call."""

    identity_path: str = "/kempublic"
    """Path that issues a session ID and the gateway's KEM public key."""

    gateway_path: str = "/gateway"
    """Path that accepts encrypted requests."""

    @classmethod
    def localhost(cls, port: int = 8080) -> "KyberLinkConfig":
        """Creates configuration for a gateway running locally."""
        return cls(gateway_url=f"http://localhost:{port}")

    def with_timeout(self, timeout: float) -> "KyberLinkConfig":
        """Returns a copy with a different timeout."""
        return replace(self, timeout=timeout)

    @property
    def identity_url(self) -> str:
        return self.gateway_url.rstrip("/") + self.identity_path

    @property
    def request_url(self) -> str:
        return self.gateway_url.rstrip("/") + self.gateway_path


class Transport(ABC):
    """Abstract base class for delivering exchange messages to a gateway."""

    @abstractmethod
    async def fetch_remote_identity(self) -> dict:
        """Fetch ``{sessionID, publicKey}`` for a new session."""
        pass

    @abstractmethod
    async def deliver(self, request: dict) -> dict:
        """Send a request wire message and return the response wire message."""
        pass


class HttpTransport(Transport):
    """
    httpx-based transport.

    Example usage:
        ```python
        config = KyberLinkConfig(gateway_url="https://gateway.example.com")
        async with HttpTransport(config) as transport:
            client = KyberLinkClient(transport)
            result = await client.send("/users", "GET")
        ```
    """

    def __init__(
        self,
        config: KyberLinkConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            config: Gateway configuration.
            client: Optional pre-built AsyncClient; the transport will not close it.
        """
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def fetch_remote_identity(self) -> dict:
        logger.info("[PHASE 1] Requesting server public key...")
        response = await self._request("GET", self.config.identity_url)

        if not response.is_success:
            raise TransportError(
                f"Init failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return _json_body(response)

    async def deliver(self, request: dict) -> dict:
        logger.info("[PHASE 2] Sending encrypted request...")
        response = await self._request("POST", self.config.request_url, json=request)

        if not response.is_success:
            body = response.text
            raise TransportError(
                f"Gateway Error {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        return _json_body(response)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, timeout=self.config.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out after {self.config.timeout}s: {url}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Gateway unreachable: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FormatError(f"Gateway returned non-JSON body: {e}") from e
    if not isinstance(data, dict):
        raise FormatError("Gateway returned a non-object JSON body")
    return data
