"""Applications API (v2): applications, scenarios, templates and the activity feed."""
from __future__ import annotations

from typing import TypeVar

from optimize.clients.api_client import APIClient, ErrorType, missing_link
from optimize.domain.models import (
    Activity,
    ActivityFeed,
    ActivityFeedQuery,
    Application,
    ApplicationList,
    ApplicationName,
    ListQuery,
    Metadata,
    Page,
    RecommendationList,
    Relation,
    Scenario,
    ScenarioList,
    Template,
)

P = TypeVar("P", bound=Page)

_APP_ERRORS = {404: ErrorType.APPLICATION_NOT_FOUND}
_SCN_ERRORS = {404: ErrorType.SCENARIO_NOT_FOUND}
_ACT_ERRORS = {404: ErrorType.ACTIVITY_NOT_FOUND}


class ApplicationsAPI:
    endpoint = "v2/applications/"

    def __init__(self, client: APIClient) -> None:
        self.client = client

    # -- pages -- #

    def get_page(self, url: str, model: type[P]) -> P:
        """Fetch a continuation page (a ``next`` link) as the given page model."""
        body, md = self.client.get_json(url)
        return model.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    # -- applications -- #

    def list_applications(self, query: ListQuery | None = None) -> ApplicationList:
        body, md = self.client.get_json(self.endpoint, params=(query or ListQuery()).params())
        return ApplicationList.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def get_application(self, url: str) -> Application:
        body, md = self.client.get_json(url, error_types=_APP_ERRORS)
        return Application.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def get_application_by_name(self, name: ApplicationName | str) -> Application:
        return self.get_application(self.endpoint + str(name))

    def create_application(self, app: Application) -> Metadata:
        _, md = self.client.send("POST", self.endpoint, app.to_wire())
        return md

    def upsert_application(self, url: str, app: Application) -> Metadata:
        _, md = self.client.send("PUT", url, app.to_wire(), error_types=_APP_ERRORS)
        return md

    def upsert_application_by_name(self, name: ApplicationName | str, app: Application) -> Metadata:
        return self.upsert_application(self.endpoint + str(name), app)

    def delete_application(self, url: str) -> None:
        self.client.request("DELETE", url, error_types=_APP_ERRORS)

    def list_recommendations(self, url: str) -> RecommendationList:
        body, md = self.client.get_json(url, error_types=_APP_ERRORS)
        return RecommendationList.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    # -- scenarios & templates -- #

    def list_scenarios(self, url: str, query: ListQuery | None = None) -> ScenarioList:
        body, md = self.client.get_json(
            url, params=(query or ListQuery()).params(), error_types=_APP_ERRORS
        )
        return ScenarioList.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def get_scenario(self, url: str) -> Scenario:
        body, md = self.client.get_json(url, error_types=_SCN_ERRORS)
        return Scenario.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def create_scenario(self, url: str, scenario: Scenario) -> Metadata:
        _, md = self.client.send("POST", url, scenario.to_wire(), error_types=_APP_ERRORS)
        return md

    def get_template(self, url: str) -> Template:
        body, md = self.client.get_json(url, error_types=_SCN_ERRORS)
        return Template.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def update_template(self, url: str, template: Template) -> None:
        self.client.send("PUT", url, template.to_wire(), error_types=_SCN_ERRORS)

    # -- activity -- #

    def activity_feed_url(self) -> str:
        # TODO switch to a HEAD request once the service advertises the feed link there
        lst = self.list_applications(ListQuery(limit=1))
        url = lst.link(Relation.ALTERNATE)
        if not url:
            raise missing_link(Relation.ALTERNATE, self.client.url(self.endpoint))
        return url

    def list_activity(self, url: str, query: ActivityFeedQuery | None = None) -> ActivityFeed:
        body, md = self.client.get_json(url, params=(query or ActivityFeedQuery()).params())
        return ActivityFeed.model_validate(body).with_metadata(md)  # type: ignore[return-value]

    def create_activity(self, url: str, activity: Activity) -> None:
        self.client.send("POST", url, activity.to_wire())

    def delete_activity(self, url: str) -> None:
        self.client.request("DELETE", url, error_types=_ACT_ERRORS)


__all__ = ["ApplicationsAPI"]
