"""Tests for the Graph helper: pagination, error envelopes and timestamps."""

import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from m365_exporter.errors import GraphError, ScrapeError
from m365_exporter.graph import GraphClient, number, parse_datetime, value_list


def _make_graph(handler) -> GraphClient:
    return GraphClient(httpx.Client(transport=httpx.MockTransport(handler)))


def test_get_builds_graph_urls_with_params():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"value": [{"id": "1"}]})

    payload = _make_graph(handler).get("organization", params={"$select": "id"})

    assert payload == {"value": [{"id": "1"}]}
    assert str(seen[0].url).startswith("https://graph.microsoft.com/v1.0/organization?")
    assert seen[0].url.params["$select"] == "id"


def test_absolute_urls_are_left_alone():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    _make_graph(handler).get("https://management.azure.com/providers/x?api-version=2014-01-01")

    assert seen[0].url.host == "management.azure.com"
    assert seen[0].url.params["api-version"] == "2014-01-01"


def test_collection_follows_next_link():
    pages = {
        "/v1.0/groups": {
            "value": [{"id": "a"}, {"id": "b"}],
            "@odata.nextLink": "https://graph.microsoft.com/v1.0/groups?$skiptoken=page2",
        },
        "page2": {"value": [{"id": "c"}]},
    }
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.params.get("$skiptoken") == "page2":
            return httpx.Response(200, json=pages["page2"])
        return httpx.Response(200, json=pages["/v1.0/groups"])

    items = _make_graph(handler).get_collection("groups", params={"$filter": "x eq true"})

    assert [item["id"] for item in items] == ["a", "b", "c"]
    assert len(seen) == 2
    assert seen[0].url.params["$filter"] == "x eq true"
    # the next link carries its own query string
    assert "$filter" not in seen[1].url.params


def test_collection_stops_on_shutdown_with_partial_results():
    shutdown = threading.Event()

    def handler(request):
        shutdown.set()
        return httpx.Response(200, json={
            "value": [{"id": "a"}],
            "@odata.nextLink": "https://graph.microsoft.com/v1.0/groups?$skiptoken=2",
        })

    with pytest.raises(ScrapeError) as excinfo:
        _make_graph(handler).get_collection("groups", shutdown=shutdown)

    assert excinfo.value.partial == ({"id": "a"},)


def test_error_envelope_is_decoded():
    def handler(request):
        return httpx.Response(403, json={
            "error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges"},
        })

    with pytest.raises(GraphError) as excinfo:
        _make_graph(handler).get("organization")

    err = excinfo.value
    assert err.status_code == 403
    assert err.code == "Authorization_RequestDenied"
    assert err.detail == "Insufficient privileges"
    assert str(err) == "unexpected status code 403: Authorization_RequestDenied: Insufficient privileges"


def test_error_without_envelope_keeps_raw_body():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(GraphError) as excinfo:
        _make_graph(handler).get("organization")

    assert excinfo.value.code is None
    assert str(excinfo.value) == "unexpected status code 502: Bad Gateway"


def test_undecodable_body_is_a_scrape_error():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(ScrapeError, match="unmarshalling"):
        _make_graph(handler).get("organization")


def test_non_object_page_is_a_scrape_error():
    def handler(request):
        return httpx.Response(200, json=[1, 2, 3])

    with pytest.raises(ScrapeError, match="expected an object"):
        _make_graph(handler).get_collection("subscribedSkus")


def test_get_object_rejects_a_list_body():
    def handler(request):
        return httpx.Response(200, json=[])

    with pytest.raises(ScrapeError, match="expected an object"):
        _make_graph(handler).get_object("organization")


def test_collection_items_must_be_objects():
    def handler(request):
        return httpx.Response(200, json={"value": ["E5", "E3"]})

    with pytest.raises(ScrapeError, match="list of objects"):
        _make_graph(handler).get_collection("subscribedSkus")


def test_value_list_treats_null_as_empty():
    assert value_list({"value": None}, "groups") == []
    assert value_list({}, "groups") == []


@pytest.mark.parametrize("value", [None, "12", True, {"count": 1}])
def test_number_rejects_non_numeric_values(value):
    with pytest.raises(ScrapeError, match="consumedUnits"):
        number(value, "consumedUnits")


def test_number_accepts_ints_and_floats():
    assert number(3, "count") == 3.0
    assert number(2.5, "count") == 2.5


@pytest.mark.parametrize("value,expected", [
    ("2024-03-01T12:30:00Z", datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)),
    ("2024-03-01T12:30:00.5Z", datetime(2024, 3, 1, 12, 30, 0, 500000, tzinfo=timezone.utc)),
    ("2024-03-01T00:00:00.1234567", datetime(2024, 3, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)),
    (
        "2024-03-01T12:30:00+02:00",
        datetime(2024, 3, 1, 12, 30, tzinfo=timezone(timedelta(hours=2))),
    ),
])
def test_parse_datetime(value, expected):
    assert parse_datetime(value) == expected


@pytest.mark.parametrize("value", ["", "yesterday", "2024-13-40T00:00:00Z"])
def test_parse_datetime_rejects_garbage(value):
    with pytest.raises(ScrapeError):
        parse_datetime(value)
