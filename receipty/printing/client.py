"""
Printer client: print, status probe and control commands over one transport.

The transport is chosen once from Settings and never changes for the life of
the process. The client holds no cache; callers that poll status() are
expected to cache it themselves. A device lock keeps a control command from
interleaving with a print on the same printer.

Retry applies to print() only, and only on transports that flag their
failures as transient (Ethernet). USB prints are attempted once.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from receipty.printing.errors import PrintError, ProtocolConfirmationError, TransportError
from receipty.printing.payload import (
    DEFAULT_IMAGE_WIDTH,
    DEFAULT_THRESHOLD,
    ImageSource,
    encode_cut_command,
    encode_feed_command,
    encode_job,
)
from receipty.printing.status import (
    STATUS_REQUEST,
    STATUS_RESPONSE_LENGTH,
    StatusReport,
    decode_status,
)
from receipty.printing.transport import Transport, create_transport

logger = logging.getLogger(__name__)

CONTROL_COMMANDS = ("feed", "cut", "status")

USB_CONTROL_UNAVAILABLE = "Printer control confirmation is not available in USB mode; command not sent."
CUT_DISABLED = "Cutting is disabled because cut_mode is set to none."
CONTROL_ERROR_STATUS = "Printer responded with an error while confirming the command."


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff before retry n (0-based) is base + random jitter + n * step, in ms."""

    retries: int = 2
    base_ms: int = 150
    jitter_ms: int = 200
    step_ms: int = 150

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        ms = self.base_ms + int(rng() * self.jitter_ms) + attempt * self.step_ms
        return ms / 1000.0


@dataclass(frozen=True)
class PrintResult:
    bytes_written: int
    attempts: int = 1


@dataclass(frozen=True)
class PrinterStatus:
    connected: bool
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"connected": self.connected, "details": dict(self.details)}


@dataclass(frozen=True)
class ControlResult:
    confirmed: bool
    status: Optional[StatusReport] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"confirmed": self.confirmed}
        if self.status is not None:
            data["status"] = self.status.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


class PrinterClient:
    def __init__(
        self,
        transport: Transport,
        *,
        feed_lines: int = 3,
        cut_mode: str = "partial",
        connect_timeout: float = 2.0,
        write_timeout: float = 2.0,
        read_timeout: float = 2.0,
        image_width: int = DEFAULT_IMAGE_WIDTH,
        image_threshold: int = DEFAULT_THRESHOLD,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.transport = transport
        self.feed_lines = feed_lines
        self.cut_mode = cut_mode
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout
        self.image_width = image_width
        self.image_threshold = image_threshold
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._device_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, transport: Optional[Transport] = None) -> "PrinterClient":
        return cls(
            transport or create_transport(settings),
            feed_lines=settings.feed_lines,
            cut_mode=settings.cut_mode,
            connect_timeout=settings.connect_timeout_ms / 1000.0,
            write_timeout=settings.write_timeout_ms / 1000.0,
            read_timeout=settings.read_timeout_ms / 1000.0,
            image_width=settings.image_width,
            image_threshold=settings.image_threshold,
            retry=RetryPolicy(
                retries=settings.retry_count,
                base_ms=settings.retry_base_ms,
                jitter_ms=settings.retry_jitter_ms,
                step_ms=settings.retry_step_ms,
            ),
        )

    @property
    def mode(self) -> str:
        return self.transport.mode

    def build_payload(self, text: Optional[str] = None, image: Optional[ImageSource] = None) -> bytes:
        """Full job payload with the configured footer. May raise ImageDecodeError."""
        return encode_job(
            text,
            image,
            self.feed_lines,
            self.cut_mode,
            image_width=self.image_width,
            threshold=self.image_threshold,
        )

    # ----- print -------------------------------------------------------------

    def _send(self, payload: bytes) -> None:
        handle = None
        try:
            handle = self.transport.open(self.connect_timeout)
            self.transport.write(handle, payload, self.write_timeout)
        finally:
            self.transport.close(handle)

    def print(self, text: Optional[str] = None, image: Optional[ImageSource] = None) -> PrintResult:
        """
        Encode and send one job: open, write, close.

        Raises the last TransportError when every attempt fails, or
        ImageDecodeError before anything is sent.
        """
        payload = self.build_payload(text, image)
        attempts = self.retry.retries + 1 if self.transport.retry_transient else 1
        with self._device_lock:
            for attempt in range(attempts):
                try:
                    self._send(payload)
                    return PrintResult(bytes_written=len(payload), attempts=attempt + 1)
                except TransportError as e:
                    if attempt + 1 >= attempts:
                        raise
                    delay = self.retry.delay(attempt, self._rng)
                    logger.warning(
                        "Network print failed (attempt %d/%d): %s; retrying in %.0f ms",
                        attempt + 1,
                        attempts,
                        e,
                        delay * 1000,
                        extra={"attempt": attempt + 1},
                    )
                    self._sleep(delay)
        raise PrintError("print retry loop exited without a result")  # pragma: no cover

    # ----- status ------------------------------------------------------------

    def status(self) -> PrinterStatus:
        """Probe reachability. Never raises."""
        details = self.transport.describe()
        try:
            connected = bool(self.transport.probe(self.connect_timeout))
        except Exception as e:
            details["error"] = str(e)
            return PrinterStatus(connected=False, details=details)
        return PrinterStatus(connected=connected, details=details)

    # ----- control -----------------------------------------------------------

    def _query_status(self, handle: Any) -> StatusReport:
        self.transport.write(handle, STATUS_REQUEST, self.write_timeout)
        raw = self.transport.read(handle, STATUS_RESPONSE_LENGTH, self.read_timeout)
        return decode_status(raw)

    def _confirm(self, command: str) -> StatusReport:
        if command not in CONTROL_COMMANDS:
            raise ProtocolConfirmationError(f"Unknown control command: {command!r}")
        if not self.transport.supports_confirmation:
            raise ProtocolConfirmationError(USB_CONTROL_UNAVAILABLE)
        if command == "cut" and self.cut_mode == "none":
            raise ProtocolConfirmationError(CUT_DISABLED)

        handle = None
        with self._device_lock:
            try:
                handle = self.transport.open(self.connect_timeout)
                if command == "feed":
                    self.transport.write(handle, encode_feed_command(self.feed_lines), self.write_timeout)
                elif command == "cut":
                    self.transport.write(
                        handle, encode_cut_command(self.feed_lines, self.cut_mode), self.write_timeout
                    )
                report = self._query_status(handle)
            finally:
                self.transport.close(handle)

        if command != "status" and not report.ok:
            raise ProtocolConfirmationError(CONTROL_ERROR_STATUS, report=report)
        return report

    def control(self, command: str) -> ControlResult:
        """
        Run feed, cut or status and confirm it with a status read.

        Failures come back as ControlResult(confirmed=False, error=...); nothing
        is raised to the caller. A status query is confirmed whenever a report
        was obtained, whatever the report says.
        """
        try:
            report = self._confirm(command)
        except ProtocolConfirmationError as e:
            logger.info("Control %s not confirmed: %s", command, e, extra={"command": command})
            return ControlResult(confirmed=False, status=e.report, error=str(e))
        except PrintError as e:
            logger.warning("Control %s failed: %s", command, e, extra={"command": command})
            return ControlResult(confirmed=False, error=str(e))
        except Exception as e:
            logger.exception("Control %s failed unexpectedly", command, extra={"command": command})
            return ControlResult(confirmed=False, error=str(e))
        logger.info("Control %s confirmed (ok=%s)", command, report.ok, extra={"command": command})
        return ControlResult(confirmed=True, status=report)


__all__ = [
    "CONTROL_COMMANDS",
    "CONTROL_ERROR_STATUS",
    "CUT_DISABLED",
    "ControlResult",
    "PrintResult",
    "PrinterClient",
    "PrinterStatus",
    "RetryPolicy",
    "USB_CONTROL_UNAVAILABLE",
]
