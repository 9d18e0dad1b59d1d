#!/usr/bin/env python3
"""
Prompt Forge Backend Server Runner
Starts the FastAPI application on configured port
"""
import uvicorn
import os
import logging
from dotenv import load_dotenv
from pathlib import Path

from logging_config import setup_logging

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger("run_server")

if __name__ == "__main__":
    setup_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_JSON", "false").lower() == "true"
    )

    port = int(os.getenv('BACKEND_PORT', 8000))
    host = os.getenv('BACKEND_HOST', '0.0.0.0')

    # Refinement sessions live in process memory, so a single worker keeps
    # every request for a session on the same state
    reload = os.getenv('RELOAD', 'false').lower() == 'true'
    mode = "DEVELOPMENT (reload enabled)" if reload else "PRODUCTION"

    logger.info(f"Starting Prompt Forge backend in {mode} mode")
    logger.info(f"URL: http://localhost:{port}")
    logger.info(f"API Docs: http://localhost:{port}/docs")

    uvicorn.run(
        "server:app",
        host=host,
        port=port,
        workers=1,
        reload=reload,
        log_level="info",
        timeout_keep_alive=30,
        limit_concurrency=100,
        backlog=2048
    )
