from __future__ import annotations

"""
Health endpoints for receipty.

- `/healthz`: liveness; reports worker/queue state and never touches the printer
- `/readyz`: readiness; 503 unless the (cached) printer probe says connected
"""

from typing import Any, Dict

from flask import Blueprint

from receipty.web.state import get_services

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"ok": True}
    status.update(get_services().queue.status())
    return status, 200


@health_bp.get("/readyz")
def readyz():
    services = get_services()
    printer = services.status_cache.get()
    body = {"ready": printer.connected, "mode": services.client.mode, "status": printer.to_dict()}
    return body, 200 if printer.connected else 503
