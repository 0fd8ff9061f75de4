"""Activity dispatch: handle scan/run items from a subscription, then acknowledge.

Every recognized item is acknowledged (deleted from the feed) exactly once,
after its handler returns, whether the handler succeeded or not. A failing
item is therefore not redelivered forever; its error is logged and kept in
``DispatchResult.errors``. Items with neither tag, and items the ``accept``
predicate rejects, are left in the feed for whichever consumer wants them.
"""
from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from optimize.clients.api_client import APIClient, APIError, missing_link
from optimize.domain.models import (
    ActivityItem,
    Application,
    Experiment,
    Relation,
    Scenario,
    Tag,
    Template,
)
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.api.experiments import ExperimentsAPI
from optimize.services.trial_runner import Evaluate, run_experiment
from optimize.utils.names import new_experiment_name

logger = logging.getLogger(__name__)

GenerateTemplate = Callable[[Scenario, Application | None], Template]


class RunBarrier:
    """Counts the runs a caller requested, keyed by scenario URL.

    Only run items whose scenario was registered with ``add`` move the
    counter, so runs other clients put on the same feed never release (or
    underflow) it. ``wait`` returns True once every registered run is done,
    False on timeout or after ``abort``.
    """

    def __init__(self) -> None:
        self._pending: Counter[str] = Counter()
        self._aborted = False
        self._cond = threading.Condition()

    @property
    def pending(self) -> int:
        with self._cond:
            return sum(self._pending.values())

    def expects(self, scenario: str) -> bool:
        with self._cond:
            return self._pending[scenario] > 0

    def add(self, scenario: str, n: int = 1) -> None:
        if n < 1:
            raise ValueError("run barrier count must be positive")
        with self._cond:
            self._pending[scenario] += n

    def done(self, scenario: str) -> bool:
        """Mark one run of ``scenario`` finished; False if none was pending."""
        with self._cond:
            if self._pending[scenario] <= 0:
                return False
            self._pending[scenario] -= 1
            if self._pending[scenario] == 0:
                del self._pending[scenario]
            if not self._pending:
                self._cond.notify_all()
            return True

    def abort(self) -> None:
        with self._cond:
            self._aborted = True
            self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        with self._cond:
            self._cond.wait_for(lambda: not self._pending or self._aborted, timeout)
            return not self._pending


@dataclass(slots=True)
class DispatchResult:
    handled: int = 0
    acknowledged: int = 0
    skipped: int = 0
    ignored: int = 0
    experiments: list[str] = field(default_factory=list)
    errors: list[tuple[ActivityItem, BaseException]] = field(default_factory=list)
    ack_failures: list[tuple[ActivityItem, Exception]] = field(default_factory=list)


class ActivityDispatcher:
    def __init__(
        self,
        client: APIClient,
        api: ApplicationsAPI,
        *,
        generate: GenerateTemplate,
        baseline: Mapping[str, Any],
        evaluate: Evaluate,
        experiment: Experiment | None = None,
        barrier: RunBarrier | None = None,
        accept: Callable[[ActivityItem], bool] | None = None,
        parallel_runs: bool = False,
        max_workers: int = 4,
        name_factory: Callable[[], str] = new_experiment_name,
    ) -> None:
        self.client = client
        self.api = api
        self.generate = generate
        self.baseline = dict(baseline)
        self.evaluate = evaluate
        self.experiment = experiment or Experiment()
        self.barrier = barrier
        self.accept = accept
        self.parallel_runs = parallel_runs
        self.max_workers = max_workers
        self.name_factory = name_factory
        self.result = DispatchResult()
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._futures: dict[Future[None], ActivityItem] = {}

    # -- consumer loop -- #

    def consume(self, channel: Iterable[ActivityItem]) -> DispatchResult:
        """Handle items until the channel closes; waits for parallel runs before returning."""
        try:
            for item in channel:
                self.dispatch(item)
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
            self._collect_futures()
        return self.result

    def _collect_futures(self) -> None:
        futures, self._futures = self._futures, {}
        for future, item in futures.items():
            exc = future.exception()
            if exc is None:
                continue
            logger.error("run worker for activity %s failed: %s", item.url, exc)
            with self._lock:
                self.result.errors.append((item, exc))

    def dispatch(self, item: ActivityItem) -> None:
        if self.accept is not None and not self.accept(item):
            # left in the feed for whoever requested it
            logger.debug("ignoring activity %s for %s", item.url, item.external_url)
            with self._lock:
                self.result.ignored += 1
            return
        if item.has_tag(Tag.SCAN):
            self._process(item, self.handle_scan, is_run=False)
        elif item.has_tag(Tag.RUN):
            if self.parallel_runs:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="trial-run"
                    )
                future = self._executor.submit(self._process, item, self.handle_run, True)
                self._futures[future] = item
            else:
                self._process(item, self.handle_run, is_run=True)
        else:
            logger.warning("skipping activity %s with unrecognized tags %s", item.url, list(item.tags))
            with self._lock:
                self.result.skipped += 1

    def _process(self, item: ActivityItem, handler: Callable[[ActivityItem], Any], is_run: bool) -> None:
        try:
            handler(item)
            with self._lock:
                self.result.handled += 1
        except Exception as exc:
            logger.error("activity %s (%s) failed: %s", item.title or item.url, ",".join(item.tags), exc)
            with self._lock:
                self.result.errors.append((item, exc))
        finally:
            try:
                self.acknowledge(item)
            finally:
                if is_run and self.barrier is not None and item.external_url:
                    self.barrier.done(item.external_url)

    def acknowledge(self, item: ActivityItem) -> bool:
        try:
            self.api.delete_activity(item.url)
        except APIError as exc:
            logger.warning("failed to acknowledge activity %s: %s", item.url, exc)
            with self._lock:
                self.result.ack_failures.append((item, exc))
            return False
        with self._lock:
            self.result.acknowledged += 1
        return True

    # -- handlers -- #

    def _scenario(self, item: ActivityItem) -> Scenario:
        # scan and run both point at the scenario through the external URL
        if not item.external_url:
            raise missing_link("scenario", item.url)
        return self.api.get_scenario(item.external_url)

    def handle_scan(self, item: ActivityItem) -> None:
        scn = self._scenario(item)
        template_url = scn.link(Relation.TEMPLATE)
        if not template_url:
            raise missing_link(Relation.TEMPLATE, scn.location())
        app_url = scn.link(Relation.UP)
        app = self.api.get_application(app_url) if app_url else None
        self.api.update_template(template_url, self.generate(scn, app))
        logger.info("updated template for scenario %s", scn.name or item.external_url)

    def handle_run(self, item: ActivityItem) -> Experiment:
        scn = self._scenario(item)
        for rel in (Relation.EXPERIMENTS, Relation.UP):
            if not scn.link(rel):
                raise missing_link(rel, scn.location())
        app = self.api.get_application(scn.link(Relation.UP))

        exp_api = ExperimentsAPI.with_endpoint(self.client, scn.link(Relation.EXPERIMENTS))
        payload = self.experiment.model_copy(deep=True)
        if not payload.display_name:
            payload.display_name = " ".join(
                str(s) for s in (app.display_name or app.name, scn.display_name or scn.name) if s
            ) or None
        exp = exp_api.create_experiment_by_name(self.name_factory(), payload)
        with self._lock:
            self.result.experiments.append(str(exp.name))
        logger.info("created experiment %s for scenario %s", exp.name, scn.name or item.external_url)

        reported = run_experiment(exp_api, exp, self.baseline, self.evaluate)
        logger.info("experiment %s finished, %d trial(s) reported", exp.name, reported)
        return exp


__all__ = ["ActivityDispatcher", "DispatchResult", "GenerateTemplate", "RunBarrier"]
