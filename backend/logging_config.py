# backend/logging_config.py
import logging


def setup_logging(level: str = "INFO"):
    """Configure the root logger. Safe to call more than once."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
