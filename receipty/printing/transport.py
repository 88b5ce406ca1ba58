"""
Transport drivers: how bytes reach the printer.

Two drivers implement the same open/write/read/probe/close contract:
- UsbTransport: a character device file (e.g. /dev/usb/lp0) when a device path
  is configured, otherwise the USB protocol stack through python-escpos/pyusb,
  addressed by vendor/product id. USB has no return channel here, so reads are
  refused and the driver does not advertise confirmation support.
- EthernetTransport: RAW printing (port 9100 by default) through python-escpos'
  Network printer, with separate connect, write and read timeouts.

Every blocking step is bounded by a timeout and surfaces a TransportError
subclass. Nothing keeps writing after a timeout has been raised. close() is
always safe to call, including with a None handle.
"""

from __future__ import annotations

import logging
import os
import select
import socket
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from receipty.printing.errors import (
    ClosedError,
    ConnectError,
    ReadError,
    TransportError,
    TransportTimeoutError,
    WriteError,
)

logger = logging.getLogger(__name__)

DEFAULT_RAW_PORT = 9100
WRITE_CHUNK = 4096


def _device_opener(path: str, flags: int) -> int:
    # Never create a file where the device should be, and never block on a
    # FIFO or a device that is not ready.
    return os.open(path, (flags & ~(os.O_CREAT | os.O_TRUNC)) | os.O_NONBLOCK)


class Transport(ABC):
    """
    Device client contract shared by all drivers.

    Capability flags let callers branch on behaviour instead of driver type:
    - supports_confirmation: read() can return a status response
    - retry_transient: write failures are worth retrying
    """

    mode: str = ""
    supports_confirmation: bool = False
    retry_transient: bool = False

    @abstractmethod
    def open(self, timeout: float) -> Any:
        """Open the device and return a handle."""

    @abstractmethod
    def write(self, handle: Any, data: bytes, timeout: float) -> None:
        """Write all of `data` or raise."""

    @abstractmethod
    def read(self, handle: Any, length: int, timeout: float) -> bytes:
        """Read exactly `length` bytes or raise."""

    @abstractmethod
    def probe(self, timeout: float) -> bool:
        """Cheap reachability check. Returns True or raises TransportError with the reason."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Release the handle. Idempotent, never raises."""

    def describe(self) -> Dict[str, Any]:
        return {"mode": self.mode}


class UsbTransport(Transport):
    mode = "usb"
    supports_confirmation = False
    retry_transient = False

    def __init__(self, vendor_id: int, product_id: int, device_path: Optional[str] = None) -> None:
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.device_path = device_path

    def describe(self) -> Dict[str, Any]:
        if self.device_path:
            return {"mode": self.mode, "devicePath": self.device_path}
        return {"mode": self.mode, "vendorId": self.vendor_id, "productId": self.product_id}

    # Device file -------------------------------------------------------------

    def _open_device_file(self):
        path = self.device_path
        try:
            return open(path, "wb", buffering=0, opener=_device_opener)
        except OSError as e:
            raise ConnectError(f"Cannot open {path}: {e}") from e

    def _write_device_file(self, handle, data: bytes, timeout: float) -> None:
        """
        Non-blocking chunked write bounded by one deadline for the whole payload.
        On timeout the remaining bytes are never sent.
        """
        deadline = time.monotonic() + timeout
        view = memoryview(data)
        try:
            while view:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportTimeoutError(f"usb write timeout ({len(data) - len(view)}/{len(data)} bytes sent)")
                _, writable, _ = select.select([], [handle], [], remaining)
                if not writable:
                    continue
                written = handle.write(view[:WRITE_CHUNK])
                if written is None:
                    continue
                if written == 0:
                    raise WriteError(f"{self.device_path} accepted no bytes")
                view = view[written:]
        except (TransportTimeoutError, WriteError):
            raise
        except OSError as e:
            raise WriteError(f"Write to {self.device_path} failed: {e}") from e

    # python-escpos / pyusb ---------------------------------------------------

    def _open_usb(self, timeout: float):
        from escpos.printer import Usb

        # pyusb applies this timeout (ms) to every bulk write
        printer = Usb(self.vendor_id, self.product_id, timeout=max(1, int(timeout * 1000)))
        try:
            printer.open()
        except Exception as e:
            raise ConnectError(f"USB device {self.vendor_id:04x}:{self.product_id:04x} unavailable: {e}") from e
        return printer

    def _write_usb(self, handle, data: bytes, timeout: float) -> None:
        import usb.core

        handle.timeout = max(1, int(timeout * 1000))
        try:
            handle._raw(data)
        except usb.core.USBTimeoutError as e:
            raise TransportTimeoutError(f"usb write timeout: {e}") from e
        except Exception as e:
            raise WriteError(f"USB write failed: {e}") from e

    # Contract ------------------------------------------------------------------

    def open(self, timeout: float) -> Any:
        if self.device_path:
            return self._open_device_file()
        return self._open_usb(timeout)

    def write(self, handle: Any, data: bytes, timeout: float) -> None:
        if self.device_path:
            self._write_device_file(handle, data, timeout)
        else:
            self._write_usb(handle, data, timeout)

    def read(self, handle: Any, length: int, timeout: float) -> bytes:
        raise ReadError("USB transport has no return channel")

    def probe(self, timeout: float) -> bool:
        if self.device_path:
            if not os.path.exists(self.device_path):
                raise ConnectError(f"{self.device_path} does not exist")
            if not os.access(self.device_path, os.W_OK):
                raise ConnectError(f"{self.device_path} is not writable")
            return True
        handle = self._open_usb(timeout)
        self.close(handle)
        return True

    def close(self, handle: Any) -> None:
        if handle is None:
            return
        try:
            handle.close()
        except Exception as e:
            logger.debug("Ignoring USB close error: %s", e)


class EthernetTransport(Transport):
    mode = "ethernet"
    supports_confirmation = True
    retry_transient = True

    def __init__(self, host: str, port: int = DEFAULT_RAW_PORT) -> None:
        self.host = host
        self.port = port

    def describe(self) -> Dict[str, Any]:
        return {"mode": self.mode, "host": self.host, "port": self.port}

    def open(self, timeout: float):
        from escpos.exceptions import DeviceNotFoundError
        from escpos.printer import Network

        printer = Network(self.host, self.port, timeout=timeout)
        try:
            printer.open()
        except DeviceNotFoundError as e:
            if isinstance(e.__context__, socket.timeout):
                raise TransportTimeoutError(f"ethernet connect timeout ({self.host}:{self.port})") from e
            raise ConnectError(f"Failed to connect to {self.host}:{self.port}: {e.__context__ or e}") from e
        return printer

    def write(self, handle, data: bytes, timeout: float) -> None:
        if not data:
            return
        try:
            handle.device.settimeout(timeout)
            handle._raw(data)
        except socket.timeout as e:
            raise TransportTimeoutError("ethernet write timeout") from e
        except OSError as e:
            raise WriteError(f"Failed to send data: {e}") from e

    def read(self, handle, length: int, timeout: float) -> bytes:
        """Read exactly `length` status bytes from the printer socket."""
        sock = handle.device
        deadline = time.monotonic() + timeout
        buf = bytearray()
        while len(buf) < length:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeoutError("ethernet status read timeout")
            try:
                sock.settimeout(remaining)
                chunk = sock.recv(length - len(buf))
            except socket.timeout as e:
                raise TransportTimeoutError("ethernet status read timeout") from e
            except OSError as e:
                raise ReadError(f"Failed to read status: {e}") from e
            if not chunk:
                raise ClosedError(f"socket closed before status response ({len(buf)}/{length} bytes)")
            buf.extend(chunk)
        return bytes(buf)

    def probe(self, timeout: float) -> bool:
        self.close(self.open(timeout))
        return True

    def close(self, handle) -> None:
        if handle is None:
            return
        try:
            handle.close()
        except OSError as e:
            logger.debug("Ignoring socket close error: %s", e)


def create_transport(settings) -> Transport:
    """
    Build the single transport for this process from Settings.
    """
    if settings.printer_mode == "usb":
        return UsbTransport(settings.usb_vendor_id, settings.usb_product_id, settings.usb_device_path)
    if settings.printer_mode == "ethernet":
        return EthernetTransport(settings.printer_host, settings.printer_port)
    raise TransportError(f"Unsupported printer mode: {settings.printer_mode}")


__all__ = [
    "DEFAULT_RAW_PORT",
    "EthernetTransport",
    "Transport",
    "UsbTransport",
    "create_transport",
]
