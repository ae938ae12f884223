#!/usr/bin/env python3
"""Main entry point: load enabled add-ons and retry queued deliveries."""

import asyncio
import logging
import sys
from pathlib import Path

# Add project to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from courier.config import load_config
from courier.db import init_db
from courier.app import build_runtime

logger = logging.getLogger(__name__)


def setup_logging(config):
    """Configure root logging from the 'logging' config section."""
    handlers = [logging.StreamHandler()]
    log_file = config["logging"].get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(config["logging"].get("level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


async def start(config):
    runtime = build_runtime(config)
    try:
        results = await runtime.start()
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(f"  ✗ {result}")
            else:
                logger.info(f"  ✓ {result.name} ({result.location or 'already present'})")

        for name, state in runtime.loader.get_status()["modules"].items():
            logger.info(f"Add-on {name}: {state}")
    finally:
        runtime.close()


def main():
    """Run the delivery runtime once."""
    config_path = project_root / "config" / "config.yaml"

    if not config_path.exists():
        print("Error: config/config.yaml not found")
        print("Copy config/config.example.yaml to config/config.yaml and configure it")
        sys.exit(1)

    config = load_config(str(config_path))
    setup_logging(config)

    # Initialize database
    init_db(config["database"]["path"])

    asyncio.run(start(config))


if __name__ == "__main__":
    main()
