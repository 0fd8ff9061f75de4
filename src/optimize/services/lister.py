"""Paged iteration over service collections.

``for_each_*`` fetch a page, call ``visit`` for every item in arrival order, then
follow the page's ``next`` link until there is none. An exception raised by
``visit`` stops the iteration and propagates unchanged.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any, TypeVar

from optimize.clients.api_client import is_not_found
from optimize.domain.models import (
    Application,
    Experiment,
    ListQuery,
    Page,
    Scenario,
)
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.api.experiments import ExperimentsAPI

T = TypeVar("T")
Visit = Callable[[T], Any]


def iter_pages(first: Page, next_page: Callable[[str], Page]) -> Iterator[Page]:
    page: Page | None = first
    while page is not None:
        yield page
        url = page.next_link()
        page = next_page(url) if url else None


def for_each_item(first: Page, next_page: Callable[[str], Page], visit: Visit) -> None:
    for page in iter_pages(first, next_page):
        for item in page.page_items():
            visit(item)


def for_each_named(
    names: Iterable[str],
    fetch: Callable[[str], T],
    ignore_not_found: bool,
    visit: Visit,
) -> None:
    """Resolve each name in order; fail fast unless the failure is an ignorable not-found."""
    for name in names:
        try:
            item = fetch(name)
        except Exception as exc:
            if ignore_not_found and is_not_found(exc):
                continue
            raise
        visit(item)


class ApplicationLister:
    def __init__(self, api: ApplicationsAPI, batch_size: int = 0) -> None:
        self.api = api
        self.batch_size = batch_size

    def _query(self, query: ListQuery | None) -> ListQuery:
        query = query or ListQuery()
        if self.batch_size > 0 and query.limit <= 0:
            query = query.model_copy(update={"limit": self.batch_size})
        return query

    def for_each_application(self, query: ListQuery | None, visit: Visit[Application]) -> None:
        first = self.api.list_applications(self._query(query))
        for_each_item(first, lambda u: self.api.get_page(u, type(first)), visit)

    def for_each_named_application(
        self, names: Sequence[str], ignore_not_found: bool, visit: Visit[Application]
    ) -> None:
        for_each_named(names, self.api.get_application_by_name, ignore_not_found, visit)

    def for_each_scenario(
        self, url: str, query: ListQuery | None, visit: Visit[Scenario]
    ) -> None:
        first = self.api.list_scenarios(url, self._query(query))
        for_each_item(first, lambda u: self.api.get_page(u, type(first)), visit)


class ExperimentLister:
    def __init__(self, api: ExperimentsAPI, batch_size: int = 0) -> None:
        self.api = api
        self.batch_size = batch_size

    def for_each_experiment(self, query: ListQuery | None, visit: Visit[Experiment]) -> None:
        query = query or ListQuery()
        if self.batch_size > 0 and query.limit <= 0:
            query = query.model_copy(update={"limit": self.batch_size})
        first = self.api.list_experiments(query)
        for_each_item(first, self.api.get_page, visit)

    def for_each_named_experiment(
        self, names: Sequence[str], ignore_not_found: bool, visit: Visit[Experiment]
    ) -> None:
        for_each_named(names, self.api.get_experiment_by_name, ignore_not_found, visit)


__all__ = [
    "ApplicationLister",
    "ExperimentLister",
    "for_each_item",
    "for_each_named",
    "iter_pages",
]
