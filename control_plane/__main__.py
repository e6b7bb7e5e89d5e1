"""
Entry point for running the Control Plane server.

Usage:
    python -m control_plane

Starts the FastAPI server on http://0.0.0.0:$PORT (default 3051).
"""
import uvicorn

from logging_setup import setup_logging
from .config import get_config

if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, use_json=True)

    uvicorn.run(
        "control_plane.webhook_server:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
    )
