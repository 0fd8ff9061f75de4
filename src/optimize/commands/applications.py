"""Application commands: get, create, edit, delete."""
from __future__ import annotations

from typing import Annotated

import typer

from optimize.clients.api_client import missing_link
from optimize.domain.models import (
    RECOMMENDATIONS_DISABLED,
    Application,
    ApplicationName,
    KubernetesResource,
    ListQuery,
    Relation,
    Resource,
)
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.services.lister import ApplicationLister
from optimize.commands.common import BatchSizeOpt, IgnoreNotFoundOpt, OutputOpt, context, printer

_COLUMNS = ("Name", "Title", "Scenarios", "Recommendations", "Deploy Interval")

TitleOpt = Annotated[str, typer.Option("--title", help="Human readable name for the application")]
NamespaceOpt = Annotated[
    list[str] | None,
    typer.Option("--namespace", help="Select application resources from a specific namespace"),
]
NsSelectorOpt = Annotated[
    str, typer.Option("--ns-selector", help="Select application resources from labeled namespaces")
]
SelectorOpt = Annotated[
    str, typer.Option("--selector", "-l", help="Select only labeled application resources")
]


def normalize_resource(r: Resource) -> tuple[Resource, bool]:
    """Collapse namespace flags into the shape the service expects.

    Returns the resource and whether any namespace selection was given at all.
    """
    k = r.kubernetes.model_copy(deep=True)
    if not k.namespace and not k.namespaces and not k.namespace_selector:
        return Resource(kubernetes=k), False
    if not k.namespace and len(k.namespaces) == 1:
        k.namespace, k.namespaces = k.namespaces[0], []
    if k.namespace and k.namespaces:
        k.namespaces = [*k.namespaces, k.namespace]
        k.namespace = ""
    return Resource(kubernetes=k), True


def _resource(namespace: list[str] | None, ns_selector: str, selector: str) -> Resource:
    return Resource(
        kubernetes=KubernetesResource(
            namespaces=list(namespace or []),
            namespace_selector=ns_selector,
            selector=selector,
        )
    )


def _print(items: list[Application], output: str | None, api: ApplicationsAPI | None = None) -> None:
    rows = []
    for app in items:
        interval = None
        if api is not None and app.recommendations != RECOMMENDATIONS_DISABLED:
            url = app.link(Relation.RECOMMENDATIONS)
            if url:
                interval = api.list_recommendations(url).deploy_configuration.interval
        rows.append((app.name, app.display_name, app.scenario_count, app.recommendations, interval))
    printer(output).print(
        title="Applications", columns=_COLUMNS, rows=rows, data=[a.to_wire() for a in items]
    )


def get_applications(
    names: Annotated[list[str] | None, typer.Argument(help="Application names")] = None,
    batch_size: BatchSizeOpt = 0,
    output: OutputOpt = None,
) -> None:
    """Display one or many applications."""
    ctx = context()
    api = ApplicationsAPI(ctx.client())
    lister = ApplicationLister(api, batch_size or ctx.config.batch_size)
    items: list[Application] = []
    if names:
        lister.for_each_named_application(names, False, items.append)
    else:
        lister.for_each_application(ListQuery(), items.append)
    _print(items, output, api)


def create_application(
    name: Annotated[str | None, typer.Argument(help="Application name (generated when omitted)")] = None,
    title: TitleOpt = "",
    namespace: NamespaceOpt = None,
    ns_selector: NsSelectorOpt = "",
    selector: SelectorOpt = "",
    output: OutputOpt = None,
) -> None:
    """Create (or update by name) an application."""
    api = ApplicationsAPI(context().client())
    app = Application(display_name=title or None)
    r, ok = normalize_resource(_resource(namespace, ns_selector, selector))
    if ok:
        app.resources.append(r)

    if name:
        md = api.upsert_application_by_name(ApplicationName(name), app)
    else:
        md = api.create_application(app)

    # fetch the application back for display; fall back to what we sent
    if md.location():
        app = api.get_application(md.location())
    _print([app], output)


def edit_application(
    name: Annotated[str, typer.Argument(help="Application name")],
    title: TitleOpt = "",
    namespace: NamespaceOpt = None,
    ns_selector: NsSelectorOpt = "",
    selector: SelectorOpt = "",
    output: OutputOpt = None,
) -> None:
    """Update the title or resources of an application."""
    api = ApplicationsAPI(context().client())
    lister = ApplicationLister(api)
    updated: list[Application] = []

    def _edit(item: Application) -> None:
        self_url = item.link(Relation.SELF)
        if not self_url:
            raise missing_link(Relation.SELF)
        needs_update = False
        if title:
            item.display_name = title
            needs_update = True
        r, ok = normalize_resource(_resource(namespace, ns_selector, selector))
        if ok:
            if item.resources:
                item.resources[0] = r
            else:
                item.resources.append(r)
            needs_update = True
        if not needs_update:
            return
        api.upsert_application(self_url, item)
        updated.append(item)

    lister.for_each_named_application([name], False, _edit)
    _print(updated, output)


def delete_applications(
    names: Annotated[list[str], typer.Argument(help="Application names")],
    ignore_not_found: IgnoreNotFoundOpt = False,
    output: OutputOpt = None,
) -> None:
    """Delete applications by name."""
    api = ApplicationsAPI(context().client())
    lister = ApplicationLister(api)
    deleted: list[Application] = []

    def _delete(item: Application) -> None:
        self_url = item.link(Relation.SELF)
        if not self_url:
            raise missing_link(Relation.SELF)
        api.delete_application(self_url)
        deleted.append(item)

    lister.for_each_named_application(names, ignore_not_found, _delete)
    _print(deleted, output)


__all__ = [
    "create_application",
    "delete_applications",
    "edit_application",
    "get_applications",
    "normalize_resource",
]
