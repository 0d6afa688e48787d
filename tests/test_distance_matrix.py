import asyncio

import pytest
import requests

from dining_finder.distance_matrix import (
    DINING_HALL_LOCATIONS,
    DistanceMatrixProxy,
    to_kilometers,
    to_minutes,
)
from dining_finder.errors import MatrixError, MissingApiKey
from dining_finder.models import Coordinate

from conftest import FakeResponse, FakeSession, matrix_payload, ok_element

ORIGIN = Coordinate(lat=37.4275, lon=-122.1697)


def _elements(count, meters=800, seconds=600):
    return [ok_element(meters + index, seconds + index * 60) for index in range(count)]


def test_compute_etas_merges_legs_by_position():
    count = len(DINING_HALL_LOCATIONS)
    session = FakeSession(
        {
            "walking": FakeResponse(payload=matrix_payload(_elements(count, 1000, 600))),
            "bicycling": FakeResponse(payload=matrix_payload(_elements(count, 1100, 180))),
        }
    )
    proxy = DistanceMatrixProxy("test-key", session=session)

    results = asyncio.run(proxy.compute_etas(ORIGIN))

    assert len(results) == count
    assert [result.hall for result in results] == [hall.name for hall in DINING_HALL_LOCATIONS]
    first, second = results[0], results[1]
    assert (first.distance_km, first.walk_min, first.bike_min) == (1.0, 10.0, 3.0)
    assert (second.distance_km, second.walk_min, second.bike_min) == (1.0, 11.0, 4.0)
    assert sorted(call["params"]["mode"] for call in session.calls) == ["bicycling", "walking"]


def test_request_carries_origin_destinations_and_key():
    count = len(DINING_HALL_LOCATIONS)
    session = FakeSession(
        {
            "walking": FakeResponse(payload=matrix_payload(_elements(count))),
            "bicycling": FakeResponse(payload=matrix_payload(_elements(count))),
        }
    )
    proxy = DistanceMatrixProxy("test-key", session=session)
    asyncio.run(proxy.compute_etas(ORIGIN))

    params = session.calls[0]["params"]
    assert params["origins"] == "37.4275,-122.1697"
    assert params["key"] == "test-key"
    assert len(params["destinations"].split("|")) == count


def test_element_failures_become_null_fields():
    count = len(DINING_HALL_LOCATIONS)
    walking = _elements(count)
    walking[2] = {"status": "ZERO_RESULTS"}
    biking = _elements(count, 1500, 300)
    biking[2] = ok_element(2350, 420)
    biking[3] = {"status": "NOT_FOUND", "distance": {"value": 10}, "duration": {"value": 10}}
    session = FakeSession(
        {
            "walking": FakeResponse(payload=matrix_payload(walking)),
            "bicycling": FakeResponse(payload=matrix_payload(biking)),
        }
    )
    results = asyncio.run(DistanceMatrixProxy("k", session=session).compute_etas(ORIGIN))

    # walking failed: distance falls back to the bike leg
    assert results[2].walk_min is None
    assert results[2].distance_km == 2.35
    assert results[2].bike_min == 7.0
    assert results[3].bike_min is None
    assert results[3].walk_min is not None


def test_short_element_list_still_covers_every_hall():
    session = FakeSession(
        {
            "walking": FakeResponse(payload=matrix_payload(_elements(2))),
            "bicycling": FakeResponse(payload=matrix_payload([])),
        }
    )
    results = asyncio.run(DistanceMatrixProxy("k", session=session).compute_etas(ORIGIN))

    assert len(results) == len(DINING_HALL_LOCATIONS)
    assert results[1].walk_min is not None
    assert all(result.bike_min is None for result in results)
    assert results[-1].distance_km is None and results[-1].walk_min is None


def test_missing_key_raises_before_any_request():
    session = FakeSession({})
    with pytest.raises(MissingApiKey):
        asyncio.run(DistanceMatrixProxy(None, session=session).compute_etas(ORIGIN))
    assert session.calls == []


def test_upstream_http_error_embeds_status():
    count = len(DINING_HALL_LOCATIONS)
    session = FakeSession(
        {
            "walking": FakeResponse(payload=matrix_payload(_elements(count))),
            "bicycling": FakeResponse(status_code=503, text="unavailable"),
        }
    )
    with pytest.raises(MatrixError) as excinfo:
        asyncio.run(DistanceMatrixProxy("k", session=session).compute_etas(ORIGIN))
    assert str(excinfo.value) == "matrix_http_503"
    assert excinfo.value.status == 503


def test_non_ok_top_level_status_fails_whole_call():
    count = len(DINING_HALL_LOCATIONS)
    session = FakeSession(
        {
            "walking": FakeResponse(payload={"status": "REQUEST_DENIED", "rows": []}),
            "bicycling": FakeResponse(payload=matrix_payload(_elements(count))),
        }
    )
    with pytest.raises(MatrixError) as excinfo:
        asyncio.run(DistanceMatrixProxy("k", session=session).compute_etas(ORIGIN))
    assert str(excinfo.value) == "matrix_invalid_response"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["not", "an", "object"],
        {"status": "OK"},
        {"status": "OK", "rows": []},
        {"status": "OK", "rows": [{"elements": "nope"}]},
    ],
)
def test_malformed_bodies_are_invalid_responses(payload):
    proxy = DistanceMatrixProxy("k", session=FakeSession({"walking": FakeResponse(payload=payload)}))
    with pytest.raises(MatrixError) as excinfo:
        proxy.fetch_elements(ORIGIN, "walking")
    assert str(excinfo.value) == "matrix_invalid_response"


def test_network_failure_is_matrix_error():
    session = FakeSession({"walking": requests.ConnectionError("dns failure")})
    with pytest.raises(MatrixError) as excinfo:
        DistanceMatrixProxy("k", session=session).fetch_elements(ORIGIN, "walking")
    assert str(excinfo.value) == "matrix_request_failed"


def test_conversions_require_ok_status_and_numbers():
    assert to_minutes(ok_element(500, 90)) == 1.5
    assert to_kilometers(ok_element(1234, 90)) == 1.23
    assert to_minutes({"status": "OK", "duration": {"value": True}}) is None
    assert to_minutes({"status": "OK", "duration": {"value": "600"}}) is None
    assert to_kilometers({"status": "OK"}) is None
    assert to_kilometers({"status": "ZERO_RESULTS", "distance": {"value": 1000}}) is None
