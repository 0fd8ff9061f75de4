"""Domain models (Pydantic) describing the optimization service resources.

Every resource returned by the service is hypermedia: besides its body it
carries a set of relation -> URL links (from the ``Link`` response header or
the ``_metadata`` object embedded in list items). ``Metadata`` is the read-only
view over those headers and ``Linked`` attaches one to each model.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, NewType
from urllib.parse import urljoin

from pydantic import BaseModel, ConfigDict, Field, field_validator

ApplicationName = NewType("ApplicationName", str)
ScenarioName = NewType("ScenarioName", str)
ExperimentName = NewType("ExperimentName", str)


class Relation:
    """Link relation names used by the service."""

    SELF = "self"
    NEXT = "next"
    PREV = "prev"
    UP = "up"
    ALTERNATE = "alternate"
    LABELS = "https://stormforge.io/rel/labels"
    TRIALS = "https://stormforge.io/rel/trials"
    NEXT_TRIAL = "https://stormforge.io/rel/next-trial"
    SCENARIOS = "https://stormforge.io/rel/scenarios"
    TEMPLATE = "https://stormforge.io/rel/template"
    EXPERIMENTS = "https://stormforge.io/rel/experiments"
    RECOMMENDATIONS = "https://stormforge.io/rel/recommendations"

    # short names accepted wherever a relation is looked up
    ALIASES = {
        "labels": LABELS,
        "trials": TRIALS,
        "next-trial": NEXT_TRIAL,
        "scenarios": SCENARIOS,
        "template": TEMPLATE,
        "experiments": EXPERIMENTS,
        "recommendations": RECOMMENDATIONS,
    }


class Tag:
    SCAN = "scan"
    RUN = "run"


# -------------------- Metadata & Links -------------------- #

_LINK_RE = re.compile(r"<([^>]*)>((?:\s*;\s*[^;,]+)*)")
_REL_RE = re.compile(r"""rel\s*=\s*(?:"([^"]*)"|([^\s;,]+))""", re.IGNORECASE)


def parse_links(values: Iterable[str], base: str = "") -> list[tuple[str, list[str]]]:
    """Parse RFC 8288 ``Link`` header values into (url, [rel, ...]) pairs."""
    out: list[tuple[str, list[str]]] = []
    for value in values:
        for match in _LINK_RE.finditer(value):
            url, params = match.group(1).strip(), match.group(2)
            rel = _REL_RE.search(params or "")
            if not rel:
                continue
            rels = (rel.group(1) or rel.group(2) or "").split()
            out.append((urljoin(base, url) if base else url, rels))
    return out


class Metadata:
    """Response envelope: Location, Title and the relation -> URL link set."""

    def __init__(self, headers: Mapping[str, Any] | None = None, *, base: str = "") -> None:
        self._base = base
        self._headers: dict[str, list[str]] = {}
        for key, value in (headers or {}).items():
            values = value if isinstance(value, list | tuple) else [value]
            self._headers.setdefault(key.lower(), []).extend(str(v) for v in values if v is not None)

    @classmethod
    def from_response(cls, response: Any) -> Metadata:
        return cls(dict(response.headers), base=getattr(response, "url", "") or "")

    def get(self, name: str) -> str:
        values = self._headers.get(name.lower())
        return values[0] if values else ""

    def location(self) -> str:
        loc = self.get("Location")
        return urljoin(self._base, loc) if loc and self._base else loc

    def title(self) -> str:
        return self.get("Title")

    def last_modified(self) -> str:
        return self.get("Last-Modified")

    def link(self, rel: str) -> str:
        """Return the URL for a relation, or "" when the resource does not have it."""
        rel = Relation.ALIASES.get(rel, rel)
        for url, rels in parse_links(self._headers.get("link", []), self._base):
            if rel in rels:
                return url
        return ""

    def links(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for url, rels in parse_links(self._headers.get("link", []), self._base):
            for r in rels:
                out.setdefault(r, url)
        return out

    def __bool__(self) -> bool:
        return bool(self._headers)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Metadata({self._headers!r})"


class Linked(BaseModel):
    """Base for resources carrying hypermedia metadata."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", arbitrary_types_allowed=True)

    metadata: Metadata = Field(default_factory=Metadata, alias="_metadata", exclude=True)

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> Metadata:
        if isinstance(value, Metadata):
            return value
        return Metadata(value or {})

    def with_metadata(self, md: Metadata) -> Linked:
        # headers from an individual fetch win over anything embedded in the body
        if md:
            self.metadata = md
        return self

    def link(self, rel: str) -> str:
        return self.metadata.link(rel)

    def location(self) -> str:
        return self.metadata.location()

    def title(self) -> str:
        return self.metadata.title()

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Page(Linked):
    """A single page of a collection; subclasses name their item field."""

    def page_items(self) -> list[Any]:  # pragma: no cover - interface
        raise NotImplementedError

    def next_link(self) -> str:
        return self.link(Relation.NEXT)


# -------------------- Applications & Scenarios -------------------- #


class KubernetesResource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    namespace: str = ""
    namespaces: list[str] = Field(default_factory=list)
    namespace_selector: str = Field(default="", alias="namespaceSelector")
    selector: str = ""


class Resource(BaseModel):
    kubernetes: KubernetesResource = Field(default_factory=KubernetesResource)


class Application(Linked):
    name: ApplicationName | None = None
    display_name: str | None = Field(default=None, alias="title")
    resources: list[Resource] = Field(default_factory=list)
    recommendations: str | None = None
    scenario_count: int | None = Field(default=None, alias="scenarioCount")


RECOMMENDATIONS_DISABLED = "disabled"


class ApplicationList(Page):
    total_count: int = Field(default=0, alias="totalCount")
    applications: list[Application] = Field(default_factory=list)

    def page_items(self) -> list[Application]:
        return self.applications


class Scenario(Linked):
    name: ScenarioName | None = None
    display_name: str | None = Field(default=None, alias="title")
    configuration: list[dict[str, Any]] = Field(default_factory=list)
    objective: list[dict[str, Any]] = Field(default_factory=list)


class ScenarioList(Page):
    total_count: int = Field(default=0, alias="totalCount")
    scenarios: list[Scenario] = Field(default_factory=list)

    def page_items(self) -> list[Scenario]:
        return self.scenarios


class Template(Linked):
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    metrics: list[dict[str, Any]] = Field(default_factory=list)


class DeployConfiguration(BaseModel):
    interval: str | None = None


class RecommendationList(Linked):
    recommendations: str | None = None
    deploy_configuration: DeployConfiguration = Field(
        default_factory=DeployConfiguration, alias="deployConfiguration"
    )


# -------------------- Experiments & Trials -------------------- #


class Experiment(Linked):
    name: ExperimentName | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    labels: dict[str, str] = Field(default_factory=dict)
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    metrics: list[dict[str, Any]] = Field(default_factory=list)
    optimization: list[dict[str, Any]] = Field(default_factory=list)
    observations: int | None = None


class ExperimentList(Page):
    total_count: int = Field(default=0, alias="totalCount")
    experiments: list[Experiment] = Field(default_factory=list)

    def page_items(self) -> list[Experiment]:
        return self.experiments


class ExperimentLabels(BaseModel):
    # an empty value removes the label
    labels: dict[str, str] = Field(default_factory=dict)


class Assignment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parameter_name: str = Field(alias="parameterName")
    value: int | float | str


class TrialAssignments(Linked):
    labels: dict[str, str] = Field(default_factory=dict)
    assignments: list[Assignment] = Field(default_factory=list)

    @classmethod
    def from_mapping(
        cls, values: Mapping[str, Any], labels: Mapping[str, str] | None = None
    ) -> TrialAssignments:
        return cls(
            labels=dict(labels or {}),
            assignments=[Assignment(parameter_name=k, value=v) for k, v in values.items()],
        )

    def assignments_dict(self) -> dict[str, Any]:
        return {a.parameter_name: a.value for a in self.assignments}


class Value(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    metric_name: str = Field(alias="metricName")
    value: float
    error: float | None = None


class TrialValues(BaseModel):
    """Result of evaluating one trial (what gets reported back)."""

    model_config = ConfigDict(populate_by_name=True)

    values: list[Value] = Field(default_factory=list)
    failed: bool = False
    failure_reason: str | None = Field(default=None, alias="failureReason")
    failure_message: str | None = Field(default=None, alias="failureMessage")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# -------------------- Activity Feed -------------------- #


class ActivityItem(BaseModel):
    """One unit of pending work from the activity feed (JSON Feed item)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = ""
    url: str
    external_url: str = ""
    title: str = ""
    tags: tuple[str, ...] = ()
    date_published: str | None = None

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


class ActivityFeed(Page):
    version: str | None = None
    title_: str | None = Field(default=None, alias="title")
    home_page_url: str | None = None
    feed_url: str | None = None
    next_url: str | None = None
    items: list[ActivityItem] = Field(default_factory=list)

    def page_items(self) -> list[ActivityItem]:
        return self.items

    def next_link(self) -> str:
        return self.next_url or self.link(Relation.NEXT)


class ActivityFeedQuery(BaseModel):
    """Feed filter; fixed at subscription time."""

    model_config = ConfigDict(frozen=True)

    types: tuple[str, ...] = ()

    def with_types(self, *tags: str) -> ActivityFeedQuery:
        return self.model_copy(update={"types": tuple(dict.fromkeys((*self.types, *tags)))})

    def matches(self, item: ActivityItem) -> bool:
        return not self.types or any(item.has_tag(t) for t in self.types)

    def params(self) -> dict[str, str]:
        return {"type": ",".join(self.types)} if self.types else {}


class ScanActivity(BaseModel):
    scenario: str


class RunActivity(BaseModel):
    scenario: str


class Activity(BaseModel):
    scan: ScanActivity | None = None
    run: RunActivity | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# -------------------- Queries -------------------- #


class ListQuery(BaseModel):
    label_selector: str = ""
    limit: int = 0
    offset: int = 0

    def params(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.label_selector:
            out["labelSelector"] = self.label_selector
        if self.limit > 0:
            out["limit"] = self.limit
        if self.offset > 0:
            out["offset"] = self.offset
        return out


__all__ = [
    "RECOMMENDATIONS_DISABLED",
    "Activity",
    "ActivityFeed",
    "ActivityFeedQuery",
    "ActivityItem",
    "Application",
    "ApplicationList",
    "ApplicationName",
    "Assignment",
    "DeployConfiguration",
    "Experiment",
    "ExperimentLabels",
    "ExperimentList",
    "ExperimentName",
    "KubernetesResource",
    "Linked",
    "ListQuery",
    "Metadata",
    "Page",
    "RecommendationList",
    "Relation",
    "Resource",
    "RunActivity",
    "ScanActivity",
    "Scenario",
    "ScenarioList",
    "ScenarioName",
    "Tag",
    "Template",
    "TrialAssignments",
    "TrialValues",
    "Value",
    "parse_links",
]
