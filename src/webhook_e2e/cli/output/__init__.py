"""Shared CLI output helpers.

Usage:
    from webhook_e2e.cli.output import Table

    table = Table(title="Results")
    table.add_column("Check", style="cyan")
    table.add_row("DaemonSet validation-webhook is available")
    console.print(table)
"""

from webhook_e2e.cli.output.table import STATUS_STYLES, Table, status_text

__all__ = ["STATUS_STYLES", "Table", "status_text"]
