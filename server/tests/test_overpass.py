from __future__ import annotations

import asyncio

import httpx

from gridtycoon.models.domain import TerritoryRecord
from gridtycoon.services.overpass import (
    EMBEDDED_TERRITORIES,
    OverpassTerritoryProvider,
    parse_state_elements,
)

SERVERS = ["https://one.example/api/interpreter", "https://two.example/api/interpreter"]

STATES_PAYLOAD = {
    "elements": [
        {"type": "relation", "id": 1656929, "tags": {"name": "Goa", "ISO3166-2": "IN-GA", "place": "state"}},
        {"type": "relation", "id": 1656197, "tags": {"name": "Delhi", "ISO3166-2": "IN-DL", "name:en": "Delhi"}},
        {"type": "relation", "id": 42, "tags": {"name": "Nowhere", "ISO3166-2": "XX-YY"}},
        {"type": "relation", "id": 43, "tags": {"ISO3166-2": "IN-ZZ"}},
    ]
}


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def test_parse_state_elements_filters_and_sorts() -> None:
    records = parse_state_elements(STATES_PAYLOAD)

    assert [record.iso_code for record in records] == ["IN-DL", "IN-GA"]
    delhi = records[0]
    assert delhi.place_type == "union_territory"
    assert delhi.osm_relation_id == 1656197
    assert records[1].place_type == "state"


def test_parse_state_elements_handles_empty_payload() -> None:
    assert parse_state_elements({}) == []
    assert parse_state_elements("<osm/>") == []


def test_fails_over_to_next_server() -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "one.example":
            return httpx.Response(429)
        assert "admin_level" in request.url.params["data"]
        return httpx.Response(200, json=STATES_PAYLOAD)

    provider = OverpassTerritoryProvider(
        servers=SERVERS, timeout=5, retry_delay=0, transport=httpx.MockTransport(handler)
    )

    result = _run(provider.fetch_territories())

    assert result.success
    assert result.data["source"] == "api"
    assert [record.name for record in result.data["territories"]] == ["Delhi", "Goa"]
    assert hosts == ["one.example", "two.example"]


def test_falls_back_to_embedded_territories() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(504)

    provider = OverpassTerritoryProvider(
        servers=SERVERS, timeout=5, retry_delay=0, transport=httpx.MockTransport(handler)
    )

    result = _run(provider.fetch_territories())

    assert result.success
    assert result.data["source"] == "fallback"
    assert len(result.data["territories"]) == 36


def test_remark_errors_count_as_failures() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"remark": "runtime error: query timed out", "elements": []})

    provider = OverpassTerritoryProvider(
        servers=SERVERS[:1], timeout=5, retry_delay=0, transport=httpx.MockTransport(handler)
    )

    result = _run(provider.fetch_territories())

    assert result.data["source"] == "fallback"
    assert calls == 2


def test_embedded_rows_are_database_ready() -> None:
    codes = [record.iso_code for record in EMBEDDED_TERRITORIES]
    assert len(codes) == len(set(codes))

    row = TerritoryRecord("Ladakh", "IN-LA", 1656199, "territory").to_row()
    assert row["place_type"] == "union_territory"
    assert row["name_en"] == "Ladakh"
    assert row["is_active"] is True


def test_malformed_json_fails_over_to_next_server() -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "one.example":
            return httpx.Response(200, text='{"elements": [')
        return httpx.Response(200, json=STATES_PAYLOAD)

    provider = OverpassTerritoryProvider(
        servers=SERVERS, timeout=5, retry_delay=0, transport=httpx.MockTransport(handler)
    )

    result = _run(provider.fetch_territories())

    assert result.data["source"] == "api"
    assert [record.iso_code for record in result.data["territories"]] == ["IN-DL", "IN-GA"]
    assert hosts == ["one.example", "two.example"]
