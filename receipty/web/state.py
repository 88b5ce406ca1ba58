"""
Per-app service wiring for the web layer.

create_app() builds one Services bundle and stores it in
app.extensions["receipty"]; blueprints reach it through get_services().
The printer status cache lives here rather than in the printer client so the
client stays stateless.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app

from receipty.core.config import Settings
from receipty.core.db import JobStore
from receipty.printing.client import PrinterClient, PrinterStatus
from receipty.printing.worker import JobQueue

EXTENSION_KEY = "receipty"


class StatusCache:
    """Remember the last printer probe for `ttl` seconds."""

    def __init__(self, client: PrinterClient, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.client = client
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._checked_at: Optional[float] = None
        self._value: Optional[PrinterStatus] = None

    def get(self) -> PrinterStatus:
        with self._lock:
            now = self._clock()
            if self._value is not None and self._checked_at is not None and now - self._checked_at < self.ttl:
                return self._value
            value = self.client.status()
            self._value = value
            self._checked_at = now
            return value


@dataclass
class Services:
    settings: Settings
    store: JobStore
    client: PrinterClient
    queue: JobQueue
    status_cache: StatusCache


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


__all__ = ["EXTENSION_KEY", "Services", "StatusCache", "get_services"]
