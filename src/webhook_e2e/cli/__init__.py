"""Command-line interface for webhook_e2e."""
