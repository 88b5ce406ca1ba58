#!/usr/bin/env python3
"""
receipty - queue text and images for an ESC/POS thermal printer over USB or Ethernet.

Run directly to serve the API with Flask's server on the configured host/port.
"""

import logging
import sys

from receipty import create_app
from receipty.core.config import ConfigError, load_settings

logger = logging.getLogger("receipty")


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"receipty: configuration error: {e}", file=sys.stderr)
        return 2
    app = create_app(settings=settings)
    logger.info("Starting receipty on http://%s:%d", settings.app_host, settings.app_port)
    app.run(host=settings.app_host, port=settings.app_port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
