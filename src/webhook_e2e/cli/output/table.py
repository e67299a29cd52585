"""Table output for CLI commands.

Wraps Rich's Table so columns fold long text (error messages, principals)
instead of truncating it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from rich.table import Table as RichTable
from rich.text import Text

if TYPE_CHECKING:
    from rich.console import ConsoleRenderable, RichCast
    from rich.style import Style

OverflowMethod = Literal["fold", "crop", "ellipsis", "ignore"]
JustifyMethod = Literal["default", "left", "center", "right", "full"]

STATUS_STYLES: dict[str, str] = {
    "passed": "green",
    "failed": "bold red",
    "skipped": "yellow",
}


class Table(RichTable):
    """Rich Table whose columns default to overflow="fold"."""

    def add_column(
        self,
        header: ConsoleRenderable | RichCast | str = "",
        footer: ConsoleRenderable | RichCast | str = "",
        *,
        style: Style | str | None = None,
        justify: JustifyMethod = "default",
        overflow: OverflowMethod = "fold",
        min_width: int | None = None,
        max_width: int | None = None,
        no_wrap: bool = False,
    ) -> None:
        """Add a column that wraps long cell text by default."""
        super().add_column(
            header,
            footer,
            style=style,
            justify=justify,
            overflow=overflow,
            min_width=min_width,
            max_width=max_width,
            no_wrap=no_wrap,
        )


def status_text(status: str) -> Text:
    """Colour a passed/failed/skipped label."""
    return Text(status.upper(), style=STATUS_STYLES.get(status, ""))
