"""
Error taxonomy for the printing subsystem.

Transport-level failures all derive from TransportError so the worker and the
retry loop can treat them uniformly. Payload and confirmation failures sit
beside them under PrintError.
"""

from __future__ import annotations


class PrintError(Exception):
    """Base class for anything that prevents a payload from reaching the printer."""


class TransportError(PrintError):
    """A failure while talking to the device (open, write, read)."""


class ConnectError(TransportError):
    """The device could not be opened or the socket could not connect."""


class TransportTimeoutError(TransportError, TimeoutError):
    """An open, write or read exceeded its configured timeout."""


class WriteError(TransportError):
    """The device accepted the connection but rejected or dropped the write."""


class ReadError(TransportError):
    """The status response could not be read."""


class ClosedError(ReadError):
    """The peer closed the connection before the full status response arrived."""


class ImageDecodeError(PrintError, ValueError):
    """The submitted image could not be decoded into a raster."""


class ProtocolConfirmationError(PrintError):
    """A control command could not be confirmed by the device."""

    def __init__(self, message: str, report=None) -> None:
        super().__init__(message)
        self.report = report


__all__ = [
    "ClosedError",
    "ConnectError",
    "ImageDecodeError",
    "PrintError",
    "ProtocolConfirmationError",
    "ReadError",
    "TransportError",
    "TransportTimeoutError",
    "WriteError",
]
