"""Tests for the HTTP transport and the typed API bindings."""

from __future__ import annotations

import pytest
import requests

from conftest import BASE, FakeServer, link
from optimize.clients.api_client import (
    APIClient,
    APIError,
    ErrorType,
    MalformedResponse,
    is_experiment_stopped,
    is_not_found,
    missing_link,
)
from optimize.domain.models import (
    Activity,
    Application,
    Experiment,
    Relation,
    ScanActivity,
    Scenario,
    TrialValues,
    Value,
)
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.api.experiments import ExperimentsAPI


def test_requests_carry_auth_and_user_agent(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={"applications": [{"name": "a"}]})
    lst = apps_api.list_applications()
    assert [a.name for a in lst.applications] == ["a"]
    (req,) = server.calls("GET", "/v2/applications/")
    assert req.headers["Authorization"] == "Bearer secret"
    assert req.headers["User-Agent"].startswith("optimize-cli/")
    assert req.headers["Accept"] == "application/json"


def test_get_application_attaches_response_links(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add(
        "GET",
        "/v2/applications/app1",
        json={"name": "app1", "title": "App"},
        headers={"Link": ", ".join([link("app1/scenarios/", "https://stormforge.io/rel/scenarios"), link("app1", "self")])},
    )
    app = apps_api.get_application_by_name("app1")
    assert app.display_name == "App"
    assert app.link("scenarios") == BASE + "v2/applications/app1/scenarios/"
    assert app.link(Relation.SELF) == BASE + "v2/applications/app1"


def test_not_found_is_typed_per_resource(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/nope", status=404, json={"error": "application not found"})
    with pytest.raises(APIError) as info:
        apps_api.get_application_by_name("nope")
    assert info.value.type == ErrorType.APPLICATION_NOT_FOUND
    assert info.value.status == 404
    assert str(info.value) == "application not found"
    assert is_not_found(info.value)


def test_unauthorized_and_unexpected_statuses(server: FakeServer, client: APIClient) -> None:
    server.add("GET", "/v1/private", status=401, json={"message": "token expired"})
    server.add("GET", "/v1/broken", status=500)
    with pytest.raises(APIError) as info:
        client.get_json("v1/private")
    assert info.value.type == ErrorType.UNAUTHORIZED
    assert str(info.value) == "token expired"
    with pytest.raises(APIError) as info:
        client.get_json("v1/broken")
    assert info.value.type == ErrorType.UNEXPECTED
    assert "500" in str(info.value)
    assert not is_not_found(info.value)


def test_invalid_json_is_malformed(server: FakeServer, client: APIClient, monkeypatch: pytest.MonkeyPatch) -> None:
    server.add("GET", "/v1/garbage", json="placeholder")
    original = server.send

    def send(request: requests.PreparedRequest, **kwargs: object) -> requests.Response:
        resp = original(request, **kwargs)
        resp._content = b"{not json"
        return resp

    monkeypatch.setattr(server, "send", send)
    with pytest.raises(MalformedResponse) as info:
        client.get_json("v1/garbage")
    assert info.value.type == ErrorType.MALFORMED_RESPONSE


def test_transport_errors_become_api_errors() -> None:
    class Refusing(requests.adapters.BaseAdapter):
        def send(self, request, **kwargs):  # type: ignore[no-untyped-def]
            raise requests.ConnectionError("connection refused")

        def close(self) -> None:
            pass

    session = requests.Session()
    session.mount("http://", Refusing())
    client = APIClient(BASE, session=session)
    with pytest.raises(APIError) as info:
        client.get_json("v2/applications/")
    assert "connection refused" in str(info.value)
    assert info.value.type == ErrorType.UNEXPECTED


def test_missing_link_names_relation() -> None:
    err = missing_link(Relation.NEXT_TRIAL, "http://x/e/1")
    assert str(err) == "malformed response, missing next-trial link"
    assert err.location == "http://x/e/1"


def test_activity_feed_url_from_alternate_link(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={"applications": []}, headers={"Link": link("/v2/activity/", "alternate")})
    assert apps_api.activity_feed_url() == BASE + "v2/activity/"
    (req,) = server.calls("GET", "/v2/applications/")
    assert req.params == {"limit": "1"}


def test_activity_feed_url_requires_alternate_link(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={"applications": []})
    with pytest.raises(MalformedResponse, match="missing alternate link"):
        apps_api.activity_feed_url()


def test_create_and_delete_activity(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("POST", "/v2/activity/", status=202)
    server.add("DELETE", "/v2/activity/7", status=404, json={"error": "gone"})
    apps_api.create_activity(BASE + "v2/activity/", Activity(scan=ScanActivity(scenario="http://x/s/1")))
    (req,) = server.calls("POST", "/v2/activity/")
    assert req.json == {"scan": {"scenario": "http://x/s/1"}}
    with pytest.raises(APIError) as info:
        apps_api.delete_activity(BASE + "v2/activity/7")
    assert info.value.type == ErrorType.ACTIVITY_NOT_FOUND


def test_upsert_application_sends_wire_names(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("PUT", "/v2/applications/app1", status=201, headers={"Location": "/v2/applications/app1"})
    md = apps_api.upsert_application_by_name("app1", Application(display_name="App"))
    assert md.location() == BASE + "v2/applications/app1"
    (req,) = server.calls("PUT", "/v2/applications/app1")
    assert req.json == {"title": "App", "resources": []}


def test_scenario_and_template_bindings(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    scenarios = BASE + "v2/applications/app1/scenarios/"
    server.add("POST", "/v2/applications/app1/scenarios/", status=201, headers={"Location": "/v2/applications/app1/scenarios/load"})
    server.add("GET", "/v2/applications/app1/scenarios/load/template", json={"parameters": [{"name": "cpu"}]})
    md = apps_api.create_scenario(scenarios, Scenario(display_name="Load"))
    assert md.location() == scenarios + "load"
    (req,) = server.calls("POST", "/v2/applications/app1/scenarios/")
    assert req.json["title"] == "Load"
    template = apps_api.get_template(md.location() + "/template")
    assert template.parameters == [{"name": "cpu"}]
    assert template.metrics == []


def test_next_trial_stop_signal(server: FakeServer, experiments_api: ExperimentsAPI) -> None:
    server.add("POST", "/v1/experiments/e1/trials/next", status=410, json={"error": "experiment stopped"})
    with pytest.raises(APIError) as info:
        experiments_api.next_trial(BASE + "v1/experiments/e1/trials/next")
    assert is_experiment_stopped(info.value)


def test_next_trial_waits_through_unavailable(server: FakeServer, experiments_api: ExperimentsAPI) -> None:
    url = "/v1/experiments/e1/trials/next"
    server.add("POST", url, status=503, json={"error": "no trial yet"}, headers={"Retry-After": "0"})
    server.add(
        "POST",
        url,
        json={"assignments": [{"parameterName": "cpu", "value": 100}]},
        headers={"Location": "/v1/experiments/e1/trials/3"},
    )
    ta = experiments_api.next_trial(BASE + url.lstrip("/"))
    assert ta.assignments_dict() == {"cpu": 100}
    assert ta.location() == BASE + "v1/experiments/e1/trials/3"
    assert len(server.calls("POST", url)) == 2


def test_next_trial_gives_up_after_retries(server: FakeServer, experiments_api: ExperimentsAPI) -> None:
    url = "/v1/experiments/e1/trials/next"
    server.add("POST", url, status=503, json={"error": "busy"}, headers={"Retry-After": "0"})
    with pytest.raises(APIError) as info:
        experiments_api.next_trial(BASE + url.lstrip("/"))
    assert info.value.type == ErrorType.TRIAL_UNAVAILABLE
    # one attempt plus the client's two retries
    assert len(server.calls("POST", url)) == 3


def test_report_trial_payload(server: FakeServer, experiments_api: ExperimentsAPI) -> None:
    server.add("POST", "/v1/experiments/e1/trials/3", status=204)
    experiments_api.report_trial(
        BASE + "v1/experiments/e1/trials/3", TrialValues(values=[Value(metric_name="cost", value=2)])
    )
    (req,) = server.calls("POST", "/v1/experiments/e1/trials/3")
    assert req.json == {"values": [{"metricName": "cost", "value": 2.0}], "failed": False}


def test_create_experiment_by_name_falls_back_to_payload(server: FakeServer, experiments_api: ExperimentsAPI) -> None:
    server.add(
        "PUT",
        "/v1/experiments/01ABC",
        status=201,
        headers={"Link": link("/v1/experiments/01ABC/trials/", "https://stormforge.io/rel/trials")},
    )
    exp = experiments_api.create_experiment_by_name("01ABC", Experiment(display_name="demo"))
    assert exp.name == "01ABC"
    assert exp.display_name == "demo"
    assert exp.link("trials") == BASE + "v1/experiments/01ABC/trials/"


def test_with_endpoint_requires_url(client: APIClient) -> None:
    with pytest.raises(MalformedResponse):
        ExperimentsAPI.with_endpoint(client, "")
    api = ExperimentsAPI.with_endpoint(client, BASE + "v2/applications/a/scenarios/s/experiments")
    assert api.endpoint.endswith("experiments/")
