"""
cvdb Server - Main entry point.

This module configures logging and serves the HTTP gateway, which owns a
Server with all components:
- Control-plane registry
- Platform client (Turso or local)
- Provisioning orchestrator
- Connection cache
- Per-session local stores and migration workflows

Usage:
    python -m dbaas.cvdb_server.main

Configuration is entirely via environment variables.
See config.py for server settings and console/gateway/config.py for the
HTTP bind address.

Invariants:
    - Configuration errors exit before anything is started
    - Secrets are never written to logs

How to change safely:
    - Add noisy third-party loggers to setup_logging() rather than
      lowering the root level
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter

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
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    import uvicorn

    from console.gateway.app import create_app
    from console.gateway.config import Settings

    settings = Settings()
    logger.info(f"Serving cvdb gateway on {settings.host}:{settings.port}")
    uvicorn.run(create_app(config=config), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
