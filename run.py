#!/usr/bin/env python3
"""
Docflow Entry Point

Starts the FastAPI server with the document workflow system.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from docflow.api import run_server
from docflow.config import get_config
from docflow.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)

    logger.info(f"Starting Docflow API at http://{config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.database_url}")
    logger.info(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Docflow API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
