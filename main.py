#!/usr/bin/env python3
"""
Quote Studio - Main Entry Point

Sets up logging and configuration, then serves the FastAPI backend with
uvicorn.

Usage:
    python main.py [--host HOST] [--port PORT] [--debug]
"""

import argparse
import sys

import uvicorn

from quote_studio.settings import settings
from quote_studio.logging_conf import setup_logging, get_logger
from quote_studio.api import create_app


def setup_application(debug: bool = False) -> bool:
    """
    Set up the application environment.

    Returns:
        True if setup was successful, False otherwise
    """
    try:
        setup_logging(debug=debug)
        logger = get_logger(__name__)

        config = settings.global_config
        logger.info(
            "Configuration loaded",
            config_path=str(settings.config_path),
            store=config.store_backend,
            structurer=config.structurer,
            data_root=str(config.data_root)
        )

        config.data_root.mkdir(parents=True, exist_ok=True)
        return True

    except Exception as e:
        print(f"Failed to set up application: {e}", file=sys.stderr)
        return False


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Quote Studio API server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    """Main application entry point."""
    args = parse_args(argv)

    if not setup_application(debug=args.debug):
        sys.exit(1)

    logger = get_logger(__name__)
    logger.info("Starting Quote Studio API", host=args.host, port=args.port)

    try:
        uvicorn.run(
            create_app(),
            host=args.host,
            port=args.port,
            log_level="debug" if args.debug else "info",
            access_log=False
        )
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    finally:
        logger.info("Application shutdown complete")


if __name__ == "__main__":
    main()
