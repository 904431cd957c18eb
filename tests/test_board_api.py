import json

import httpx
import pytest

from services.board_api.client import BoardFetchClient
from services.board_api.errors import EmptyResult, HttpError, InvalidShape, NetworkError
from services.board_api.validation import parse_board_document

ENDPOINT = "http://board.test/api/houses"


def _document(**extra):
    doc = {
        "houses": [
            {"name": "Green Hill", "points": 40, "color": "#00cc66"},
            {"name": "Union Hill", "points": 75, "color": "#ff4444"},
            {"name": "Newton Hill", "points": 40, "color": "#C0C0C0"},
        ]
    }
    doc.update(extra)
    return doc


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def test_houses_are_ranked_descending_with_stable_ties():
    snapshot = parse_board_document(_document())
    assert [h.name for h in snapshot.houses] == ["Union Hill", "Green Hill", "Newton Hill"]
    assert snapshot.total_points == 155


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"houses": "nope"},
        {},
        {"houses": [{"name": "A", "points": "10", "color": "#fff"}]},
        {"houses": [{"name": "A", "points": True, "color": "#fff"}]},
        {"houses": [{"name": "A", "points": 1}]},
        {
            "houses": [
                {"name": "A", "points": 1, "color": "#fff"},
                {"name": "A", "points": 2, "color": "#000"},
            ]
        },
    ],
)
def test_invalid_houses_are_rejected(payload):
    with pytest.raises(InvalidShape):
        parse_board_document(payload)


def test_empty_houses_is_empty_result():
    with pytest.raises(EmptyResult) as info:
        parse_board_document({"houses": []})
    assert str(info.value) == "No house data available"


def test_malformed_auxiliary_sections_fall_back_to_empty():
    snapshot = parse_board_document(
        _document(
            lastInputs=[{"timestamp": 5}],
            topContributors="oops",
            message=42,
            displayEnabled="yes",
        )
    )
    assert snapshot.recent_events == ()
    assert snapshot.top_contributors == ()
    assert snapshot.message is None
    assert snapshot.display_enabled is None
    assert len(snapshot.houses) == 3


def test_auxiliary_sections_are_bounded():
    inputs = [
        {"timestamp": f"01/03/2026 10:00:0{i}", "house": "Green Hill", "points": i}
        for i in range(5)
    ]
    contributors = [{"email": f"u{i}@school.org", "points": i} for i in range(1, 8)]
    snapshot = parse_board_document(
        _document(
            lastInputs=inputs,
            topContributors=contributors,
            message="Spirit week!",
            displayEnabled=False,
            backgroundColor="#123456",
        )
    )
    assert len(snapshot.recent_events) == 3
    assert [c.points for c in snapshot.top_contributors] == [7, 6, 5, 4, 3]
    assert snapshot.message == "Spirit week!"
    assert snapshot.display_enabled is False
    assert snapshot.background_color == "#123456"


def test_legacy_show_board_field_is_accepted():
    assert parse_board_document(_document(showBoard=True)).display_enabled is True


# ----------------------------------------------------------------------
# Client
# ----------------------------------------------------------------------

def _client(handler, **kwargs):
    return BoardFetchClient(
        endpoint=ENDPOINT,
        transport=httpx.MockTransport(handler),
        time_source=lambda: 1_700_000_000.5,
        **kwargs,
    )


async def test_fetch_sends_cache_busting_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_document())

    snapshot = await _client(handler).fetch()

    assert snapshot.houses[0].name == "Union Hill"
    request = seen[0]
    assert request.method == "GET"
    assert request.url.params["t"] == "1700000000500"
    assert request.headers["Cache-Control"] == "no-cache"
    assert request.headers["Pragma"] == "no-cache"


async def test_fetch_is_idempotent():
    def handler(request):
        return httpx.Response(200, json=_document())

    client = _client(handler)
    assert await client.fetch() == await client.fetch()


async def test_non_success_status_raises_http_error():
    def handler(request):
        return httpx.Response(503, text="down")

    with pytest.raises(HttpError) as info:
        await _client(handler).fetch()
    assert info.value.status == 503
    assert str(info.value) == "HTTP error! status: 503"
    assert isinstance(info.value, NetworkError)


async def test_transport_failure_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        await _client(handler).fetch()


async def test_non_json_body_is_invalid_shape():
    def handler(request):
        return httpx.Response(200, content=b"<html>", headers={"Content-Type": "text/html"})

    with pytest.raises(InvalidShape):
        await _client(handler).fetch()


async def test_empty_board_raises_empty_result():
    def handler(request):
        return httpx.Response(200, content=json.dumps({"houses": []}).encode())

    with pytest.raises(EmptyResult):
        await _client(handler).fetch()


def test_client_requires_endpoint():
    with pytest.raises(RuntimeError):
        BoardFetchClient(endpoint="")


def test_contributors_are_aggregated_by_label():
    snapshot = parse_board_document(
        _document(
            topContributors=[
                {"email": "A", "points": 10},
                {"email": "B", "points": 5},
                {"email": "A", "points": 7},
            ]
        )
    )
    assert [(c.label, c.points) for c in snapshot.top_contributors] == [("A", 17), ("B", 5)]


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_house_points_are_invalid_shape(raw):
    payload = json.loads(
        '{"houses": [{"name": "A", "points": %s, "color": "#fff"}]}' % raw
    )
    with pytest.raises(InvalidShape):
        parse_board_document(payload)


def test_non_finite_auxiliary_points_fall_back_to_empty():
    payload = json.loads(
        '{"lastInputs": [{"timestamp": "01/03/2026 10:00:00", "house": "A", "points": NaN}],'
        ' "topContributors": [{"email": "a@school.org", "points": Infinity}]}'
    )
    payload.update(_document())
    snapshot = parse_board_document(payload)
    assert snapshot.recent_events == ()
    assert snapshot.top_contributors == ()


async def test_non_finite_points_in_response_raise_board_fetch_error():
    def handler(request):
        body = b'{"houses": [{"name": "A", "points": NaN, "color": "#fff"}]}'
        return httpx.Response(200, content=body, headers={"Content-Type": "application/json"})

    with pytest.raises(InvalidShape):
        await _client(handler).fetch()
