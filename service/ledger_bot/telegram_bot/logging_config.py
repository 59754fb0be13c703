"""
Logging configuration for the ledger bot.
"""

import logging
import sys

def setup_logging():
    """Setup logging with proper format and handlers."""

    logger = logging.getLogger("ledger_bot")
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    # Keep uvicorn's root handlers from printing every line twice
    logger.propagate = False

    return logger

# Global logger instance
bot_logger = setup_logging()
