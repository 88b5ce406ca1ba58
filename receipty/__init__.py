"""
receipty package

This module provides the application factory:
- Configures logging via receipty.core.logging
- Loads immutable Settings (a ConfigError here is fatal and propagates)
- Wires the job store, printer client, status cache and print worker
- Initializes CSRF protection and per-client rate limiting on the JSON API
- Registers the web blueprints
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from flask import Flask, g, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf import CSRFProtect

from receipty.core.config import ConfigError, Settings, load_settings
from receipty.core.logging import configure_logging

csrf = CSRFProtect()

logger = logging.getLogger(__name__)


def _set_request_id() -> None:
    """
    Assign a request ID for logging, honoring an inbound X-Request-ID.
    """
    from flask import request

    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex


def create_app(
    config_overrides: Optional[dict] = None,
    settings: Optional[Settings] = None,
    store=None,
    printer_client=None,
    register_worker: bool = True,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - settings: prebuilt Settings; loaded from env/config file when None
    - store: a JobStore to use instead of opening settings.db_path
    - printer_client: a PrinterClient to use instead of building one from settings
    - register_worker: if True, starts the print worker to drain leftover jobs

    Returns:
    - Flask app instance
    """
    from receipty.core.db import JobStore
    from receipty.printing.client import PrinterClient
    from receipty.printing.worker import JobQueue
    from receipty.web import api_bp, health_bp
    from receipty.web.api import rate_limit
    from receipty.web.state import EXTENSION_KEY, Services, StatusCache

    configure_logging()

    if settings is None:
        settings = load_settings()
    logger.info("Config loaded: %s", settings.redacted())

    app = Flask("receipty")
    app.secret_key = settings.secret_key
    # Base64 inflates uploads by a third; leave room for the text and JSON framing.
    app.config["MAX_CONTENT_LENGTH"] = settings.max_image_bytes * 4 // 3 + settings.max_chars * 4 + 64 * 1024
    app.url_map.strict_slashes = False

    csrf.init_app(app)
    # Counters live in this app only.
    limiter = Limiter(get_remote_address, app=app, storage_uri="memory://")
    limiter.limit(rate_limit)(api_bp)

    if store is None:
        store = JobStore(settings.db_path)
        store.fail_interrupted_jobs()
    client = printer_client or PrinterClient.from_settings(settings)
    queue = JobQueue(store, client)
    app.extensions[EXTENSION_KEY] = Services(
        settings=settings,
        store=store,
        client=client,
        queue=queue,
        status_cache=StatusCache(client, settings.status_cache_ttl_ms / 1000.0),
    )

    @app.errorhandler(429)
    def _too_many_requests(e):
        return jsonify({"error": "Too Many Requests"}), 429

    @app.before_request
    def _before_request():
        _set_request_id()

    app.register_blueprint(health_bp)
    app.register_blueprint(api_bp)

    if register_worker:
        queue.start()
        logger.info("Print worker started (mode=%s)", client.mode)

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["ConfigError", "create_app", "csrf"]
