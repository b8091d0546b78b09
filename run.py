#!/usr/bin/env python3
"""
Ledgerbook Entry Point

Starts the FastAPI server with the bookkeeping system configured from
LEDGERBOOK_* environment variables (or .env).
"""

import sys

import uvicorn

from ledgerbook.api import create_app
from ledgerbook.api.dependencies import BookkeepingSystem
from ledgerbook.config import get_config
from ledgerbook.logging_config import setup_logging


def main() -> None:
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    system = BookkeepingSystem(config)
    app = create_app(system)
    logger.info(f"Starting Ledgerbook API on {config.api_host}:{config.api_port} "
                f"({config.storage_backend} storage)")
    try:
        uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down Ledgerbook API")
    finally:
        system.close()


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
