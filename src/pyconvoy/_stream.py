"""Internal WebSocket live-feed client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from pyconvoy._constants import ABNORMAL_CLOSURE
from pyconvoy.exceptions import ConvoyParseError
from pyconvoy.ingestion.stream import decode_stream_message
from pyconvoy.models.route import Route
from pyconvoy.state.events import DroneUpdate


@dataclass(frozen=True)
class StreamOpened:
    """The live feed connection is established."""

    url: str


@dataclass(frozen=True)
class StreamClosed:
    """The live feed connection ended or could not be established."""

    code: int | None


@dataclass(frozen=True)
class StreamUpdate:
    """A decoded drone update from the live feed."""

    update: DroneUpdate


StreamEvent = StreamOpened | StreamClosed | StreamUpdate


class StreamClient(Protocol):
    """Surface the supervisor needs from a live-feed client."""

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    async def close(self) -> None: ...


StreamFactory = Callable[[Callable[[StreamEvent], None]], StreamClient]


class ConvoyStreamClient:
    """Single-connection aiohttp WebSocket reader that emits :data:`StreamEvent` values.

    The client reports closes and failed connects but never retries; retry
    policy belongs to the caller.
    """

    def __init__(
        self,
        *,
        url: str,
        http_session: aiohttp.ClientSession,
        route: Route,
        on_event: Callable[[StreamEvent], None],
        heartbeat: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._http_session = http_session
        self._route = route
        self._on_event = on_event
        self._heartbeat = heartbeat
        self._logger = logger or logging.getLogger(__name__)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        """Whether the WebSocket is currently connected."""
        return self._ws is not None and not self._ws.closed

    @property
    def is_running(self) -> bool:
        """Whether the reader task is alive (connecting or connected)."""
        return self._task is not None and not self._task.done()

    def open(self) -> None:
        """Start connecting in the background. No-op while already running."""
        if self.is_running:
            return
        self._logger.debug("Live feed connect requested url=%s", self._url)
        self._task = asyncio.get_running_loop().create_task(self._run(), name="pyconvoy-stream")

    async def close(self) -> None:
        """Cancel the reader task and close the socket. Emits no event."""
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._logger.debug("Live feed closed by caller url=%s", self._url)

    async def _run(self) -> None:
        close_code: int | None = None
        try:
            async with self._http_session.ws_connect(self._url, heartbeat=self._heartbeat) as ws:
                self._ws = ws
                self._logger.debug("Live feed connected url=%s", self._url)
                self._emit(StreamOpened(url=self._url))
                async for msg in ws:
                    if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                        self._handle_message(msg.data)
                    elif msg.type is aiohttp.WSMsgType.ERROR:
                        self._logger.debug("Live feed socket error: %s", ws.exception())
                        break
                close_code = ws.close_code
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            self._logger.debug("Live feed connection failed url=%s: %s", self._url, exc)
        except Exception:
            self._logger.debug("Live feed reader failed url=%s", self._url, exc_info=True)
        finally:
            self._ws = None

        self._emit(StreamClosed(code=close_code if close_code is not None else ABNORMAL_CLOSURE))

    def _handle_message(self, data: str | bytes) -> None:
        try:
            update = decode_stream_message(data, self._route)
        except ConvoyParseError:
            self._logger.debug("Live feed frame dropped", exc_info=True)
            return
        if update is not None:
            self._emit(StreamUpdate(update=update))

    def _emit(self, event: StreamEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            self._logger.debug("Live feed event callback failed", exc_info=True)
