"""HTTP transport for the convoy tracking REST API."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp

from pyconvoy._constants import HEALTH_ENDPOINT
from pyconvoy.config import ConvoyConfig
from pyconvoy.exceptions import ConvoyTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the supervisor and ingestion.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def probe_health(self) -> bool: ...

    async def get_json(self, endpoint: str, *, timeout: float | None = None) -> Any: ...

    async def post(self, endpoint: str, *, timeout: float | None = None) -> None: ...


class HttpTransport:
    """aiohttp-backed REST transport."""

    def __init__(self, config: ConvoyConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _url(self, endpoint: str) -> str:
        return f"{self._config.api_url}{endpoint}"

    @staticmethod
    def _timeout(seconds: float | None) -> aiohttp.ClientTimeout | None:
        return aiohttp.ClientTimeout(total=seconds) if seconds is not None else None

    async def probe_health(self) -> bool:
        """Return ``True`` iff ``GET /health`` answers 2xx within the probe timeout.

        Network errors and timeouts count as unhealthy; nothing is raised.
        """
        url = self._url(HEALTH_ENDPOINT)
        _logger.debug("GET %s", url)
        try:
            async with self._http.get(url, timeout=self._timeout(self._config.probe_timeout)) as resp:
                healthy = 200 <= resp.status < 300
        except (aiohttp.ClientError, TimeoutError) as exc:
            _logger.debug("Health probe failed: %r", exc)
            return False
        if not healthy:
            _logger.debug("Health probe returned HTTP %s", resp.status)
        return healthy

    async def get_json(self, endpoint: str, *, timeout: float | None = None) -> Any:
        """GET *endpoint* and decode the JSON body.

        Raises
        ------
        ConvoyTransportError
            On network failure, timeout, non-2xx status or invalid JSON.
        """
        url = self._url(endpoint)
        _logger.debug("GET %s", url)
        try:
            async with self._http.get(url, timeout=self._timeout(timeout)) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise ConvoyTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except ConvoyTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ConvoyTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConvoyTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    async def post(self, endpoint: str, *, timeout: float | None = None) -> None:
        """POST to *endpoint* with an empty body, ignoring the response content.

        Raises
        ------
        ConvoyTransportError
            On network failure, timeout or non-2xx status.
        """
        url = self._url(endpoint)
        _logger.debug("POST %s", url)
        try:
            async with self._http.post(url, timeout=self._timeout(timeout)) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise ConvoyTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except ConvoyTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ConvoyTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc
