"""Helpers shared by the command modules."""
from __future__ import annotations

from typing import Annotated

import typer

from optimize.infrastructure.output import Printer
from optimize.runtime import AppContext, bootstrap

OutputOpt = Annotated[
    str | None,
    typer.Option("--output", "-o", help="Output format: table|json|yaml"),
]
BatchSizeOpt = Annotated[
    int,
    typer.Option("--batch-size", help="Fetch large lists in chunks rather than all at once"),
]
IgnoreNotFoundOpt = Annotated[
    bool,
    typer.Option("--ignore-not-found", help="Treat not found errors as successful deletes"),
]


def context() -> AppContext:
    return bootstrap()


def printer(output: str | None) -> Printer:
    fmt = output or context().config.output
    try:
        return Printer(fmt)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--output") from exc


__all__ = ["BatchSizeOpt", "IgnoreNotFoundOpt", "OutputOpt", "context", "printer"]
