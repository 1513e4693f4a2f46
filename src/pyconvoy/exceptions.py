"""Custom exception hierarchy for pyconvoy."""

from __future__ import annotations


class ConvoyError(Exception):
    """Base exception for all pyconvoy errors."""


class ConvoyConfigError(ConvoyError):
    """Invalid or missing configuration."""


class ConvoyStateError(ConvoyError):
    """Illegal connection-mode transition requested."""


class ConvoyTransportError(ConvoyError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ConvoyParseError(ConvoyError):
    """Inbound live-feed envelope could not be decoded.

    Never fatal: the stream client logs the failure and drops the frame.
    """


class ConvoyProbeError(ConvoyError):
    """Health probe failed or timed out.

    Both outcomes are handled identically and force the supervisor into
    simulation mode.
    """


class ConvoyReconnectExhaustedError(ConvoyError):
    """The live feed closed too many times in a row."""

    def __init__(self, message: str, *, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class ConvoyResetCallError(ConvoyTransportError):
    """Remote mission reset failed; the local reset has already been applied."""
