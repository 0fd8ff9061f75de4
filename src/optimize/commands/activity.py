"""Activity feed commands: list, request, watch."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Annotated

import typer

from optimize.clients.api_client import APIClient
from optimize.domain.models import (
    Activity,
    ActivityFeedQuery,
    ActivityItem,
    RunActivity,
    ScanActivity,
    Tag,
)
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.logging import render_panel
from optimize.runtime import RuntimeConfig
from optimize.services.definition import (
    Definition,
    MetricEvaluator,
    TemplateGenerator,
    load_definition,
)
from optimize.services.dispatch import ActivityDispatcher, DispatchResult, RunBarrier
from optimize.services.lister import for_each_item
from optimize.services.subscriber import Channel, Subscriber, subscribe_activity
from optimize.commands.common import OutputOpt, context, printer

logger = logging.getLogger(__name__)

app = typer.Typer(help="Work with the activity feed")

DefinitionOpt = Annotated[
    Path,
    typer.Option("--definition", "-f", exists=True, dir_okay=False, help="Optimization definition (YAML)"),
]


def build_dispatcher(
    client: APIClient,
    api: ApplicationsAPI,
    definition: Definition,
    *,
    barrier: RunBarrier | None = None,
    accept: Callable[[ActivityItem], bool] | None = None,
    parallel: bool = False,
) -> ActivityDispatcher:
    return ActivityDispatcher(
        client,
        api,
        generate=TemplateGenerator(definition),
        baseline=definition.baseline,
        evaluate=MetricEvaluator(definition),
        experiment=definition.experiment,
        barrier=barrier,
        accept=accept,
        parallel_runs=parallel,
    )


def start_subscription(
    api: ApplicationsAPI,
    config: RuntimeConfig,
    tags: list[str],
    cancel: threading.Event,
) -> tuple[Subscriber, Channel]:
    query = ActivityFeedQuery().with_types(*tags)
    sub = subscribe_activity(
        api, query, cancel, interval=config.poll_interval, jitter=config.poll_jitter
    )
    channel = Channel()
    sub.subscribe(channel)
    return sub, channel


def render_result(result: DispatchResult) -> None:
    lines = [
        f"handled: {result.handled}  acknowledged: {result.acknowledged}  skipped: {result.skipped}"
        + (f"  ignored: {result.ignored}" if result.ignored else ""),
    ]
    if result.experiments:
        lines.append("experiments: " + ", ".join(result.experiments))
    for item, exc in result.errors:
        lines.append(f"[red]failed[/red] {item.title or item.url}: {exc}")
    for item, exc in result.ack_failures:
        lines.append(f"[yellow]not acknowledged[/yellow] {item.url}: {exc}")
    style = "red" if result.errors or result.ack_failures else "green"
    render_panel("activity", "\n".join(lines), style=style)


@app.command("list")
def list_cmd(
    tag: Annotated[list[str] | None, typer.Option("--tag", help="Only show items with this tag")] = None,
    output: OutputOpt = None,
) -> None:
    """Show pending activity items."""
    api = ApplicationsAPI(context().client())
    feed_url = api.activity_feed_url()
    first = api.list_activity(feed_url, ActivityFeedQuery().with_types(*(tag or [])))
    items: list[ActivityItem] = []
    for_each_item(first, lambda u: api.get_page(u, type(first)), items.append)
    printer(output).print(
        title="Activity",
        columns=("Title", "Tags", "Scenario", "Published"),
        rows=[(i.title, ",".join(i.tags), i.external_url, i.date_published) for i in items],
        data=[i.model_dump(mode="json") for i in items],
    )


@app.command("request")
def request_cmd(
    kind: Annotated[str, typer.Argument(help="scan|run")],
    scenario: Annotated[str, typer.Argument(help="Scenario URL")],
) -> None:
    """Ask the service to schedule a scan or a run of a scenario."""
    if kind == Tag.SCAN:
        activity = Activity(scan=ScanActivity(scenario=scenario))
    elif kind == Tag.RUN:
        activity = Activity(run=RunActivity(scenario=scenario))
    else:
        raise typer.BadParameter("expected 'scan' or 'run'", param_hint="KIND")
    api = ApplicationsAPI(context().client())
    api.create_activity(api.activity_feed_url(), activity)
    render_panel("activity", f"requested {kind} for {scenario}", style="green")


@app.command("watch")
def watch_cmd(
    definition: DefinitionOpt,
    tag: Annotated[
        list[str] | None, typer.Option("--tag", help="Activity tags to handle (default: scan, run)")
    ] = None,
    parallel: Annotated[bool, typer.Option("--parallel", help="Run experiments concurrently")] = False,
) -> None:
    """Subscribe to the activity feed and handle scans and runs until interrupted."""
    ctx = context()
    client = ctx.client()
    api = ApplicationsAPI(client)
    defn = load_definition(definition)
    cancel = threading.Event()
    sub, channel = start_subscription(api, ctx.config, tag or [Tag.SCAN, Tag.RUN], cancel)
    dispatcher = build_dispatcher(client, api, defn, parallel=parallel)
    render_panel("activity", f"watching {sub.feed_url}", style="cyan")
    try:
        dispatcher.consume(channel)
    except KeyboardInterrupt:
        logger.info("interrupted, cancelling subscription")
    finally:
        cancel.set()
        sub.join(timeout=5.0)
    render_result(dispatcher.result)
    if sub.error is not None:
        raise sub.error


__all__ = ["app", "build_dispatcher", "render_result", "start_subscription"]
