"""
Decoding of ESC/POS real-time status responses (DLE EOT n).

The printer answers the four status requests with one byte each, in the order
the requests were sent: printer, roll paper sensor, offline cause, error cause.
decode_status() turns those bytes into a StatusReport; format_status_report()
renders one as printable text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

SEVERITIES = ("ok", "warning", "error")

# (bit, label, severity). Bits not listed (fixed or reserved) produce no entry.
_BitTable = Tuple[Tuple[int, str, str], ...]

STATUS_CLASSES: Tuple[Tuple[str, _BitTable], ...] = (
    (
        "PrinterStatus",
        (
            (2, "Drawer kick-out connector pin 3 is HIGH", "ok"),
            (3, "Offline", "error"),
            (5, "Waiting for online recovery", "warning"),
            (6, "Paper feed button is being pressed", "ok"),
        ),
    ),
    (
        "RollPaperSensorStatus",
        (
            (2, "Paper roll near-end detected", "warning"),
            (3, "Paper roll near-end detected", "warning"),
            (5, "Paper roll end detected", "error"),
            (6, "Paper roll end detected", "error"),
        ),
    ),
    (
        "OfflineCauseStatus",
        (
            (2, "Cover is open", "error"),
            (3, "Paper is being fed by the paper feed button", "ok"),
            (5, "Printing stops due to a paper-end", "error"),
            (6, "Error occurred", "error"),
        ),
    ),
    (
        "ErrorCauseStatus",
        (
            (2, "Autocutter error occurred", "error"),
            (3, "Unrecoverable error occurred", "error"),
            (5, "Auto-recoverable error occurred", "warning"),
        ),
    ),
)

# DLE EOT 1, DLE EOT 4, DLE EOT 2, DLE EOT 3; answers arrive in this order.
STATUS_REQUEST = bytes(
    [
        0x10, 0x04, 0x01,
        0x10, 0x04, 0x04,
        0x10, 0x04, 0x02,
        0x10, 0x04, 0x03,
    ]
)
STATUS_RESPONSE_LENGTH = len(STATUS_CLASSES)


@dataclass(frozen=True)
class StatusEntry:
    bit: int
    label: str
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return {"bit": self.bit, "label": self.label, "status": self.severity}


@dataclass(frozen=True)
class StatusClassReport:
    name: str
    byte: int
    entries: List[StatusEntry] = field(default_factory=list)

    @property
    def bits(self) -> str:
        return format(self.byte, "08b")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "className": self.name,
            "byte": self.byte,
            "bits": self.bits,
            "statuses": [e.to_dict() for e in self.entries],
        }


@dataclass(frozen=True)
class StatusReport:
    ok: bool
    raw: List[int]
    classes: List[StatusClassReport]

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "raw": list(self.raw), "statuses": [c.to_dict() for c in self.classes]}


def _decode_class(name: str, table: _BitTable, byte: int) -> StatusClassReport:
    entries: List[StatusEntry] = []
    seen = set()
    for bit, label, severity in table:
        if byte & (1 << bit) and label not in seen:
            seen.add(label)
            entries.append(StatusEntry(bit=bit, label=label, severity=severity))
    return StatusClassReport(name=name, byte=byte, entries=entries)


def decode_status(data: Sequence[int]) -> StatusReport:
    """
    Decode up to four status bytes. Missing bytes count as 0x00, extra bytes are ignored.
    """
    raw = [int(b) & 0xFF for b in list(data)[:STATUS_RESPONSE_LENGTH]]
    padded = raw + [0] * (STATUS_RESPONSE_LENGTH - len(raw))
    classes = [_decode_class(name, table, byte) for (name, table), byte in zip(STATUS_CLASSES, padded)]
    ok = all(entry.severity != "error" for cls in classes for entry in cls.entries)
    return StatusReport(ok=ok, raw=raw, classes=classes)


def format_status_report(report: StatusReport, now: Optional[datetime] = None) -> str:
    """Render a report as plain ASCII suitable for printing as a text job."""
    generated = (now or datetime.now(timezone.utc)).isoformat()
    lines = [
        "STATUS REPORT",
        f"Generated: {generated}",
        f"Overall: {'OK' if report.ok else 'ATTENTION'}",
        "",
    ]
    for cls in report.classes:
        lines.append(cls.name)
        if not cls.entries:
            lines.append("  [OK] All clear.")
        for entry in cls.entries:
            level = "WARN" if entry.severity == "warning" else entry.severity.upper()
            lines.append(f"  [{level}] {entry.label}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


__all__ = [
    "SEVERITIES",
    "STATUS_CLASSES",
    "STATUS_REQUEST",
    "STATUS_RESPONSE_LENGTH",
    "StatusClassReport",
    "StatusEntry",
    "StatusReport",
    "decode_status",
    "format_status_report",
]
