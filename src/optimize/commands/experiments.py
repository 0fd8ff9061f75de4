"""Experiment commands: get, delete, label."""
from __future__ import annotations

from typing import Annotated

import typer

from optimize.domain.models import Experiment, ExperimentLabels, ListQuery, Relation
from optimize.infrastructure.api.experiments import ExperimentsAPI
from optimize.services.lister import ExperimentLister
from optimize.utils.labels import args_to_names_and_labels, format_label_selector, parse_label_selector
from optimize.commands.common import BatchSizeOpt, IgnoreNotFoundOpt, OutputOpt, context, printer

_COLUMNS = ("Name", "Title", "Observations", "Labels")


def _print(items: list[Experiment], output: str | None) -> None:
    rows = [
        (
            e.name,
            e.display_name,
            e.observations,
            ",".join(f"{k}={v}" for k, v in sorted(e.labels.items())),
        )
        for e in items
    ]
    printer(output).print(
        title="Experiments", columns=_COLUMNS, rows=rows, data=[e.to_wire() for e in items]
    )


def get_experiments(
    names: Annotated[list[str] | None, typer.Argument(help="Experiment names")] = None,
    batch_size: BatchSizeOpt = 0,
    selector: Annotated[
        str, typer.Option("--selector", "-l", help="Selector (label query) to filter on")
    ] = "",
    output: OutputOpt = None,
) -> None:
    """Display one or many experiments."""
    ctx = context()
    lister = ExperimentLister(ExperimentsAPI(ctx.client()), batch_size or ctx.config.batch_size)
    items: list[Experiment] = []
    lister.for_each_named_experiment(names or [], False, items.append)
    if not names:
        try:
            sel = format_label_selector(parse_label_selector(selector))
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--selector") from exc
        lister.for_each_experiment(ListQuery(label_selector=sel), items.append)
    _print(items, output)


def delete_experiments(
    names: Annotated[list[str], typer.Argument(help="Experiment names")],
    ignore_not_found: IgnoreNotFoundOpt = False,
    output: OutputOpt = None,
) -> None:
    """Delete experiments by name."""
    api = ExperimentsAPI(context().client())
    deleted: list[Experiment] = []

    def _delete(item: Experiment) -> None:
        self_url = item.link(Relation.SELF)
        if not self_url:
            return
        api.delete_experiment(self_url)
        deleted.append(item)

    ExperimentLister(api).for_each_named_experiment(names, ignore_not_found, _delete)
    _print(deleted, output)


def label_experiments(
    args: Annotated[list[str], typer.Argument(help="NAME... KEY=VAL... (KEY- removes a label)")],
    output: OutputOpt = None,
) -> None:
    """Add, change or remove experiment labels."""
    try:
        names, labels = args_to_names_and_labels(args)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if not labels:
        raise typer.BadParameter("at least one KEY=VAL label is required")
    api = ExperimentsAPI(context().client())
    labeled: list[Experiment] = []

    def _label(item: Experiment) -> None:
        labels_url = item.link(Relation.LABELS)
        if not labels_url:
            return
        api.label_experiment(labels_url, ExperimentLabels(labels=labels))
        labeled.append(item)

    ExperimentLister(api).for_each_named_experiment(names, False, _label)
    _print(labeled, output)


__all__ = ["delete_experiments", "get_experiments", "label_experiments"]
