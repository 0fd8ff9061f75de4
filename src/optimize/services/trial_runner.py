"""Trial-run loop: baseline trial, then next-trial / evaluate / report until stopped."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from optimize.clients.api_client import MalformedResponse, is_experiment_stopped, missing_link
from optimize.domain.models import Experiment, Relation, TrialAssignments, TrialValues
from optimize.infrastructure.api.experiments import ExperimentsAPI

logger = logging.getLogger(__name__)

Evaluate = Callable[[TrialAssignments], TrialValues]

BASELINE_LABELS = {"baseline": "true"}


@dataclass(frozen=True, slots=True)
class TrialOutcome:
    """Result of asking for the next trial: assigned, stopped, or failed."""

    status: Literal["assigned", "stopped", "failed"]
    assignments: TrialAssignments | None = None
    error: Exception | None = None


def next_trial_outcome(api: ExperimentsAPI, url: str) -> TrialOutcome:
    try:
        ta = api.next_trial(url)
    except Exception as exc:
        if is_experiment_stopped(exc):
            return TrialOutcome("stopped")
        return TrialOutcome("failed", error=exc)
    return TrialOutcome("assigned", assignments=ta)


def create_baseline(api: ExperimentsAPI, exp: Experiment, baseline: Mapping[str, Any]) -> str:
    trials_url = exp.link(Relation.TRIALS)
    if not trials_url:
        raise missing_link(Relation.TRIALS, exp.location())
    md = api.create_trial(trials_url, TrialAssignments.from_mapping(baseline, BASELINE_LABELS))
    return md.location()


def run_experiment(
    api: ExperimentsAPI,
    exp: Experiment,
    baseline: Mapping[str, Any],
    evaluate: Evaluate,
) -> int:
    """Drive one experiment until the server reports it stopped.

    Returns the number of trials reported after the baseline. Any failure other
    than the stop signal is raised and ends the loop.
    """
    next_url = exp.link(Relation.NEXT_TRIAL)
    if not next_url:
        raise missing_link(Relation.NEXT_TRIAL, exp.location())
    create_baseline(api, exp, baseline)
    logger.info("experiment %s: baseline trial created", exp.name)

    reported = 0
    while True:
        outcome = next_trial_outcome(api, next_url)
        if outcome.status == "stopped":
            logger.info("experiment %s stopped after %d trial(s)", exp.name, reported)
            return reported
        if outcome.error is not None:
            raise outcome.error
        ta = outcome.assignments
        if ta is None:
            raise MalformedResponse("malformed response, missing trial assignments", location=next_url)
        location = ta.location()
        if not location:
            raise MalformedResponse("malformed response, missing trial location", location=next_url)
        values = evaluate(ta)
        api.report_trial(location, values)
        reported += 1
        logger.debug("experiment %s: reported trial %d (%s)", exp.name, reported, location)


__all__ = [
    "BASELINE_LABELS",
    "Evaluate",
    "TrialOutcome",
    "create_baseline",
    "next_trial_outcome",
    "run_experiment",
]
