import asyncio
import logging

import config
import web_remote
from app import VJDisplay


def _setup_logging():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format=config.LOG_FORMAT,
        handlers=[logging.StreamHandler(),
                  logging.FileHandler(config.LOG_FILE, encoding="utf-8")],
    )


def main():
    _setup_logging()
    display = VJDisplay()
    web_remote.start(display)
    asyncio.run(display.run())

if __name__ == "__main__":
    main()
