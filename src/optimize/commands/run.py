"""Run commands: drive a scenario or an existing experiment from a local definition."""
from __future__ import annotations

import logging
import threading
from typing import Annotated

import typer

from optimize.domain.models import Activity, RunActivity, ScanActivity, Tag
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.api.experiments import ExperimentsAPI
from optimize.infrastructure.logging import render_panel
from optimize.services.definition import MetricEvaluator, load_definition
from optimize.services.dispatch import RunBarrier
from optimize.services.trial_runner import run_experiment
from optimize.commands.activity import DefinitionOpt, build_dispatcher, render_result, start_subscription
from optimize.commands.common import context

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run optimizations locally")


@app.command("scenario")
def run_scenario(
    scenario: Annotated[str, typer.Argument(help="Scenario URL")],
    definition: DefinitionOpt,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for the run to finish (0 waits forever)")
    ] = 0,
) -> None:
    """Scan a scenario, then run an experiment for it and report every trial."""
    ctx = context()
    client = ctx.client()
    api = ApplicationsAPI(client)
    defn = load_definition(definition)

    cancel = threading.Event()
    barrier = RunBarrier()
    sub, channel = start_subscription(api, ctx.config, [Tag.SCAN, Tag.RUN], cancel)
    # other clients may share the feed; only this scenario's items are ours
    dispatcher = build_dispatcher(
        client, api, defn, barrier=barrier, accept=lambda item: item.external_url == scenario
    )

    def consume() -> None:
        try:
            dispatcher.consume(channel)
        finally:
            # a closed channel means no run can finish any more
            barrier.abort()

    consumer = threading.Thread(target=consume, name="activity-consumer", daemon=True)
    consumer.start()

    feed_url = sub.feed_url
    finished = False
    try:
        api.create_activity(feed_url, Activity(scan=ScanActivity(scenario=scenario)))
        barrier.add(scenario)
        try:
            api.create_activity(feed_url, Activity(run=RunActivity(scenario=scenario)))
        except Exception:
            barrier.done(scenario)
            raise
        render_panel("run", f"requested scan and run for {scenario}", style="cyan")
        finished = barrier.wait(timeout or None)
    except KeyboardInterrupt:
        logger.info("interrupted, cancelling run")
    finally:
        cancel.set()
        sub.join(timeout=5.0)
        consumer.join(timeout=5.0)

    render_result(dispatcher.result)
    if sub.error is not None:
        raise sub.error
    if not finished:
        render_panel("run", "run did not finish", style="red")
        raise typer.Exit(1)
    if dispatcher.result.errors:
        raise typer.Exit(1)


@app.command("experiment")
def run_existing_experiment(
    name: Annotated[str, typer.Argument(help="Experiment name")],
    definition: DefinitionOpt,
) -> None:
    """Run trials for an experiment that already exists."""
    defn = load_definition(definition)
    api = ExperimentsAPI(context().client())
    exp = api.get_experiment_by_name(name)
    reported = run_experiment(api, exp, defn.baseline, MetricEvaluator(defn))
    render_panel("run", f"experiment {exp.name}: {reported} trial(s) reported", style="green")


__all__ = ["app", "run_existing_experiment", "run_scenario"]
