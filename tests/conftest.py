# Ensure the repository root is on sys.path so `receipty` can be imported in tests.

import sys
import threading
import time
from pathlib import Path
from typing import Any, List, Optional


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

import pytest  # noqa: E402

from receipty.core.config import Settings  # noqa: E402
from receipty.core.db import JobStore  # noqa: E402
from receipty.printing.transport import Transport  # noqa: E402


class RecordingTransport(Transport):
    """
    In-memory transport. Records every call, can fail on chosen attempts, and
    flags any overlapping open/close sessions.
    """

    def __init__(
        self,
        mode: str = "ethernet",
        *,
        supports_confirmation: bool = True,
        retry_transient: bool = True,
        open_errors: Optional[List[Optional[Exception]]] = None,
        write_errors: Optional[List[Optional[Exception]]] = None,
        response: bytes = b"\x00\x00\x00\x00",
        read_error: Optional[Exception] = None,
        probe_error: Optional[Exception] = None,
        write_delay: float = 0.0,
    ) -> None:
        self.mode = mode
        self.supports_confirmation = supports_confirmation
        self.retry_transient = retry_transient
        self.open_errors = list(open_errors or [])
        self.write_errors = list(write_errors or [])
        self.response = response
        self.read_error = read_error
        self.probe_error = probe_error
        self.write_delay = write_delay
        self.calls: List[Any] = []
        self.writes: List[bytes] = []
        self.opens = 0
        self.closes = 0
        self.probes = 0
        self.active = 0
        self.overlapped = False
        self._lock = threading.Lock()

    def open(self, timeout: float):
        with self._lock:
            self.opens += 1
            self.calls.append(("open", timeout))
            err = self.open_errors.pop(0) if self.open_errors else None
            if err is not None:
                raise err
            self.active += 1
            if self.active > 1:
                self.overlapped = True
            return object()

    def write(self, handle, data: bytes, timeout: float) -> None:
        self.calls.append(("write", bytes(data)))
        if self.write_delay:
            time.sleep(self.write_delay)
        err = self.write_errors.pop(0) if self.write_errors else None
        if err is not None:
            raise err
        self.writes.append(bytes(data))

    def read(self, handle, length: int, timeout: float) -> bytes:
        self.calls.append(("read", length))
        if self.read_error is not None:
            raise self.read_error
        return self.response[:length]

    def probe(self, timeout: float) -> bool:
        self.probes += 1
        if self.probe_error is not None:
            raise self.probe_error
        return True

    def close(self, handle) -> None:
        self.calls.append(("close",))
        if handle is None:
            return
        with self._lock:
            self.closes += 1
            self.active -= 1

    def describe(self):
        return {"mode": self.mode}


@pytest.fixture
def make_settings():
    def _make(**over: Any) -> Settings:
        base = {
            "printer_mode": "ethernet",
            "printer_host": "127.0.0.1",
            "printer_port": 9100,
            "db_path": ":memory:",
            "feed_lines": 2,
            "cut_mode": "partial",
            "retry_base_ms": 0,
            "retry_jitter_ms": 0,
            "retry_step_ms": 0,
        }
        base.update(over)
        return Settings(**base)

    return _make


@pytest.fixture
def store():
    s = JobStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def transport_factory():
    return RecordingTransport
