"""Version information for webhook_e2e."""

__version__ = "0.1.0"
