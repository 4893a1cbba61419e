#!/usr/bin/env python3
"""
Single-process startup for the escrow marketplace.
Production runs under gunicorn with gunicorn_conf.py instead.
"""
import logging
import sys

import uvicorn

from config import Config

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

# Quiet third-party chatter
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def main():
    logger.info(f"🚀 Starting escrow marketplace on port {Config.PORT} ({Config.CURRENT_ENVIRONMENT})")
    uvicorn.run("webhook_server:app", host="0.0.0.0", port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
