"""
VoltHome sync server - Main entry point.

This module starts the HTTP API in front of the sync engine.

Usage:
    python -m volthome.sync_server.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - Configuration is validated before anything is served
    - Logging is configured before the first request

How to change safely:
    - Keep setup_logging idempotent; tests and uvicorn reload call it again
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.app import create_app
from .api.settings import ApiSettings
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
        settings = ApiSettings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)
    config.log_config()

    app = create_app(config, settings)
    logger.info("Starting sync server", extra={"host": settings.host, "port": settings.port})

    # uvicorn installs its own SIGINT/SIGTERM handlers and drains requests
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
