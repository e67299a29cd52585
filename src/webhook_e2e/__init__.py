"""Verification suite for a cluster's validating admission webhook."""

from webhook_e2e.__version__ import __version__

__all__ = ["__version__"]
