"""Experiments API (v1alpha1): experiments, labels and trials."""
from __future__ import annotations

from optimize.clients.api_client import APIClient, ErrorType, MalformedResponse
from optimize.domain.models import (
    Experiment,
    ExperimentLabels,
    ExperimentList,
    ExperimentName,
    ListQuery,
    Metadata,
    TrialAssignments,
    TrialValues,
)

_EXP_ERRORS = {404: ErrorType.EXPERIMENT_NOT_FOUND}
_NEXT_TRIAL_ERRORS = {
    404: ErrorType.EXPERIMENT_NOT_FOUND,
    410: ErrorType.EXPERIMENT_STOPPED,
    503: ErrorType.TRIAL_UNAVAILABLE,
}


class ExperimentsAPI:
    def __init__(self, client: APIClient, endpoint: str = "v1/experiments/") -> None:
        self.client = client
        self.endpoint = endpoint if endpoint.endswith("/") else endpoint + "/"

    @classmethod
    def with_endpoint(cls, client: APIClient, url: str) -> ExperimentsAPI:
        """Bind to an experiments collection discovered through a link (e.g. a scenario's)."""
        if not url:
            raise MalformedResponse("malformed response, missing experiments link")
        return cls(client, url)

    def get_page(self, url: str) -> ExperimentList:
        body, md = self.client.get_json(url)
        return ExperimentList.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def list_experiments(self, query: ListQuery | None = None) -> ExperimentList:
        body, md = self.client.get_json(self.endpoint, params=(query or ListQuery()).params())
        return ExperimentList.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def get_experiment(self, url: str) -> Experiment:
        body, md = self.client.get_json(url, error_types=_EXP_ERRORS)
        return Experiment.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def get_experiment_by_name(self, name: ExperimentName | str) -> Experiment:
        return self.get_experiment(self.endpoint + str(name))

    def create_experiment_by_name(self, name: ExperimentName | str, exp: Experiment) -> Experiment:
        body, md = self.client.send("PUT", self.endpoint + str(name), exp.to_wire())
        created = Experiment.model_validate(body) if body else exp.model_copy(deep=True)
        if created.name is None:
            created.name = ExperimentName(str(name))
        return created.with_metadata(md)  # type: ignore[return-value]

    def delete_experiment(self, url: str) -> None:
        self.client.request("DELETE", url, error_types=_EXP_ERRORS)

    def label_experiment(self, url: str, labels: ExperimentLabels) -> None:
        self.client.send("POST", url, labels.model_dump(), error_types=_EXP_ERRORS)

    def create_trial(self, url: str, assignments: TrialAssignments) -> Metadata:
        _, md = self.client.send("POST", url, assignments.to_wire(), error_types=_EXP_ERRORS)
        return md

    def next_trial(self, url: str) -> TrialAssignments:
        """Ask the server for the next assignment.

        Raises ``APIError`` typed ``experiment-stopped`` once the experiment is done.
        """
        body, md = self.client.send(
            "POST", url, error_types=_NEXT_TRIAL_ERRORS, wait_unavailable=True
        )
        return TrialAssignments.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def report_trial(self, url: str, values: TrialValues) -> None:
        self.client.send("POST", url, values.to_wire(), error_types=_EXP_ERRORS)


__all__ = ["ExperimentsAPI"]
