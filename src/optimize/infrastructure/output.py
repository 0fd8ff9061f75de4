"""Command output: rich tables for people, JSON/YAML for scripts."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import orjson
import yaml
from rich.console import Console
from rich.table import Table

from optimize.infrastructure.logging import get_console

FORMATS = ("table", "json", "yaml")


class Printer:
    def __init__(self, fmt: str = "table", console: Console | None = None) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"unknown output format {fmt!r} (expected one of {', '.join(FORMATS)})")
        self.fmt = fmt
        self.console = console or get_console()

    def print(
        self,
        *,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        data: Any,
    ) -> None:
        if self.fmt == "json":
            text = orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")
            self.console.out(text, highlight=False)
            return
        if self.fmt == "yaml":
            self.console.out(yaml.safe_dump(data, sort_keys=False).rstrip(), highlight=False)
            return
        if not rows:
            self.console.print(f"[yellow]No {title.lower()} found[/yellow]")
            return
        table = Table(title=title)
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*("-" if v in (None, "") else str(v) for v in row))
        self.console.print(table)


__all__ = ["FORMATS", "Printer"]
