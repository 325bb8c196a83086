"""
Ordered HTTP transport strategies for reaching the ThingSpeak API.

A fetch walks the transport list in order and the first tier that returns a
decodable JSON body wins.  Every tier is tried at most once per fetch and is
bounded by its own timeout, so worst-case latency is the sum of the
attempted tiers' timeouts.  No retries, no backoff: the polling cadence is
the retry.

Tiers:
- ``direct``: GET on the shared pooled client.
- ``alternate``: GET on a fresh single-use client with ``Connection: close``,
  which recovers from a wedged keep-alive pool or stale DNS in the shared
  client.
- ``relay``: GET ``{relay_url}?url=<target>`` through a pass-through proxy.
  Only built when a relay URL is configured.

CHANGELOG:
- 2026-10-05: Make relay tier opt-in (STORY-005)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx

from tankmon.src.errors import TransportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S: float = 10.0
"""Default timeout per transport attempt in seconds."""

_JSON_HEADERS = {"Accept": "application/json"}

Params = Mapping[str, str | int]


class Transport(ABC):
    """One way of issuing a GET and decoding its JSON body."""

    name: str = "transport"

    def __init__(self, timeout_s: float = REQUEST_TIMEOUT_S) -> None:
        self._timeout = httpx.Timeout(timeout_s)

    @abstractmethod
    async def _send(self, url: str, params: Params) -> httpx.Response: ...

    async def get_json(self, url: str, params: Params | None = None) -> Any:
        """GET *url* and return the decoded JSON body.

        Raises:
            TransportError: On timeout, connection failure, non-2xx status or
                an undecodable body.
        """
        try:
            response = await self._send(url, params or {})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"{self.name}: HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{self.name}: {type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"{self.name}: invalid JSON body from {url}") from exc


class DirectTransport(Transport):
    """GET through the shared, pooled :class:`httpx.AsyncClient`."""

    name = "direct"

    def __init__(self, client: httpx.AsyncClient, timeout_s: float = REQUEST_TIMEOUT_S) -> None:
        super().__init__(timeout_s)
        self._client = client

    async def _send(self, url: str, params: Params) -> httpx.Response:
        return await self._client.get(
            url, params=params, headers=_JSON_HEADERS, timeout=self._timeout
        )


def _fresh_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(headers={"Connection": "close"}, follow_redirects=True)


class AlternateTransport(Transport):
    """GET through a single-use client that shares no connections.

    Args:
        client_factory: Builds the throwaway client; injectable for tests.
        timeout_s: Timeout for the attempt.
    """

    name = "alternate"

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient] = _fresh_client,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        super().__init__(timeout_s)
        self._client_factory = client_factory

    async def _send(self, url: str, params: Params) -> httpx.Response:
        async with self._client_factory() as client:
            response = await client.get(
                url, params=params, headers=_JSON_HEADERS, timeout=self._timeout
            )
            await response.aread()
            return response


class RelayTransport(Transport):
    """GET the target through a relay that takes it as a ``url`` parameter."""

    name = "relay"

    def __init__(
        self,
        client: httpx.AsyncClient,
        relay_url: str,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        super().__init__(timeout_s)
        self._client = client
        self._relay_url = relay_url

    async def _send(self, url: str, params: Params) -> httpx.Response:
        target = str(httpx.URL(url, params=params))
        return await self._client.get(
            self._relay_url, params={"url": target}, timeout=self._timeout
        )


def build_transports(
    client: httpx.AsyncClient,
    *,
    timeout_s: float = REQUEST_TIMEOUT_S,
    relay_url: str = "",
    alternate_factory: Callable[[], httpx.AsyncClient] | None = None,
) -> list[Transport]:
    """Build the ordered transport list: direct, alternate, then relay if set."""
    transports: list[Transport] = [
        DirectTransport(client, timeout_s),
        AlternateTransport(alternate_factory or _fresh_client, timeout_s),
    ]
    if relay_url:
        transports.append(RelayTransport(client, relay_url, timeout_s))
    return transports


async def fetch_json(
    transports: Sequence[Transport],
    url: str,
    params: Params | None = None,
) -> Any:
    """Try each transport once, in order, and return the first JSON body.

    Raises:
        TransportError: When every tier failed (or the list is empty).
    """
    for transport in transports:
        try:
            return await transport.get_json(url, params)
        except TransportError as exc:
            logger.warning("Transport '%s' failed: %s", transport.name, exc)
    raise TransportError(f"All {len(transports)} transports failed for {url}")
