# deployment_engine/run_api.py
"""Run the read-only health API."""

import logging
import os

import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", "8090"))
    logger.info(f"🚀 Starting Deployment Engine API on {host}:{port}")
    uvicorn.run("deployment_engine.api.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
