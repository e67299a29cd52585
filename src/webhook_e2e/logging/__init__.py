"""Logging configuration for webhook_e2e."""

from webhook_e2e.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
