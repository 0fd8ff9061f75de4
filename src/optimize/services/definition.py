"""Optimization definition files (YAML).

A definition bundles everything the activity handlers need that the service
does not provide: the baseline assignments, the scenario template pushed on a
scan, and how to compute metric values for a trial. Example::

    application: {title: my-app}
    scenario: {title: load-test}
    experiment: {displayName: my-app load-test}
    baseline: {cpu: 500, memory: 1024}
    template:
      parameters:
        - {name: cpu, type: int, min: 100, max: 4000, baseline: 500}
      metrics:
        - {name: cost, minimize: true, description: "{{ scenario.name }} cost"}
    metrics:
      cost: "assignments.cpu * 0.017 + assignments.memory * 0.002"
      duration: 120
    failOn: "assignments.cpu < 200"
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from jinja2 import TemplateError
from pydantic import BaseModel, ConfigDict, Field

from optimize.domain.models import (
    Application,
    Experiment,
    Scenario,
    Template,
    TrialAssignments,
    TrialValues,
    Value,
)
from optimize.infrastructure.templating.engine import evaluate_expression, render_value

logger = logging.getLogger(__name__)


class Definition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    application: Application = Field(default_factory=Application)
    scenario: Scenario = Field(default_factory=Scenario)
    experiment: Experiment = Field(default_factory=Experiment)
    baseline: dict[str, Any] = Field(default_factory=dict)
    template: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, float | str] = Field(default_factory=dict)
    fail_on: str | None = Field(default=None, alias="failOn")


def load_definition(path: Path) -> Definition:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Definition root must be a mapping")
    return Definition.model_validate(data)


def _context(default: BaseModel, resource: BaseModel | None) -> dict[str, Any]:
    """Resource fields by wire name; values the service left empty come from the definition."""
    out = default.model_dump(mode="json", by_alias=True, exclude={"metadata"})
    if resource is not None:
        actual = resource.model_dump(mode="json", by_alias=True, exclude={"metadata"})
        out.update({k: v for k, v in actual.items() if v not in (None, "", [], {})})
    return out


class TemplateGenerator:
    """Produces the scenario template pushed in response to a scan."""

    def __init__(self, definition: Definition) -> None:
        self.definition = definition

    def __call__(self, scenario: Scenario, application: Application | None = None) -> Template:
        ctx = {
            "scenario": _context(self.definition.scenario, scenario),
            "application": _context(self.definition.application, application),
        }
        return Template.model_validate(render_value(self.definition.template, ctx))


class MetricEvaluator:
    """Computes trial values from the definition's metric constants/expressions.

    Evaluation problems are reported as a failed trial rather than raised, so a
    single bad assignment does not end the experiment.
    """

    def __init__(self, definition: Definition) -> None:
        self.definition = definition

    def __call__(self, ta: TrialAssignments) -> TrialValues:
        ctx = {"assignments": ta.assignments_dict(), "labels": dict(ta.labels)}
        try:
            if self.definition.fail_on and evaluate_expression(self.definition.fail_on, ctx):
                return TrialValues(
                    failed=True,
                    failure_reason="FailOn",
                    failure_message=f"trial matched failOn: {self.definition.fail_on}",
                )
            values = [
                Value(metric_name=name, value=self._metric(expr, ctx))
                for name, expr in self.definition.metrics.items()
            ]
        except (TemplateError, ArithmeticError, TypeError, ValueError) as exc:
            logger.warning("trial evaluation failed: %s", exc)
            return TrialValues(failed=True, failure_reason="EvaluationError", failure_message=str(exc))
        return TrialValues(values=values)

    @staticmethod
    def _metric(expr: float | str, ctx: dict[str, Any]) -> float:
        if isinstance(expr, int | float):
            return float(expr)
        return float(evaluate_expression(expr, ctx))


__all__ = ["Definition", "MetricEvaluator", "TemplateGenerator", "load_definition"]
