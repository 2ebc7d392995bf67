"""Territory providers backed by the OpenStreetMap Overpass API."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Protocol

import httpx

from ..config import settings
from ..models.domain import OperationResult, TerritoryRecord, is_valid_iso_code

logger = logging.getLogger(__name__)

USER_AGENT = "GridTycoon/3.2"

STATE_QUERIES = (
    """[out:json][timeout:{timeout}];
(
  relation["boundary"="administrative"]["admin_level"="4"]["country"="IN"];
);
out tags;""",
    """[out:json][timeout:120];
(
  relation["boundary"="administrative"]["admin_level"="4"]["ISO3166-2"~"^IN-"];
);
out tags;""",
)

EMBEDDED_TERRITORIES = (
    TerritoryRecord("Andhra Pradesh", "IN-AP", 1656186),
    TerritoryRecord("Arunachal Pradesh", "IN-AR", 1656183),
    TerritoryRecord("Assam", "IN-AS", 1656184),
    TerritoryRecord("Bihar", "IN-BR", 1656168),
    TerritoryRecord("Chhattisgarh", "IN-CT", 1656170),
    TerritoryRecord("Goa", "IN-GA", 1656929),
    TerritoryRecord("Gujarat", "IN-GJ", 1656190),
    TerritoryRecord("Haryana", "IN-HR", 1656180),
    TerritoryRecord("Himachal Pradesh", "IN-HP", 1656178),
    TerritoryRecord("Jharkhand", "IN-JH", 1656166),
    TerritoryRecord("Karnataka", "IN-KA", 1656160),
    TerritoryRecord("Kerala", "IN-KL", 1656161),
    TerritoryRecord("Madhya Pradesh", "IN-MP", 1656172),
    TerritoryRecord("Maharashtra", "IN-MH", 1656179),
    TerritoryRecord("Manipur", "IN-MN", 1656227),
    TerritoryRecord("Meghalaya", "IN-ML", 1656174),
    TerritoryRecord("Mizoram", "IN-MZ", 1656175),
    TerritoryRecord("Nagaland", "IN-NL", 1656176),
    TerritoryRecord("Odisha", "IN-OR", 1656177),
    TerritoryRecord("Punjab", "IN-PB", 1656181),
    TerritoryRecord("Rajasthan", "IN-RJ", 1656182),
    TerritoryRecord("Sikkim", "IN-SK", 1656185),
    TerritoryRecord("Tamil Nadu", "IN-TN", 1656187),
    TerritoryRecord("Telangana", "IN-TG", 1656188),
    TerritoryRecord("Tripura", "IN-TR", 1656189),
    TerritoryRecord("Uttar Pradesh", "IN-UP", 1656191),
    TerritoryRecord("Uttarakhand", "IN-UT", 1656192),
    TerritoryRecord("West Bengal", "IN-WB", 1656193),
    TerritoryRecord("Andaman and Nicobar Islands", "IN-AN", 1656194, "union_territory"),
    TerritoryRecord("Chandigarh", "IN-CH", 1656195, "union_territory"),
    TerritoryRecord("Dadra and Nagar Haveli and Daman and Diu", "IN-DH", 1656196, "union_territory"),
    TerritoryRecord("Delhi", "IN-DL", 1656197, "union_territory"),
    TerritoryRecord("Jammu and Kashmir", "IN-JK", 1656198, "union_territory"),
    TerritoryRecord("Ladakh", "IN-LA", 1656199, "union_territory"),
    TerritoryRecord("Lakshadweep", "IN-LD", 1656200, "union_territory"),
    TerritoryRecord("Puducherry", "IN-PY", 1656201, "union_territory"),
)


class OverpassError(RuntimeError):
    """Raised when no Overpass server returned a usable response."""


class TerritoryProvider(Protocol):
    async def fetch_territories(self) -> OperationResult:
        """Return the territory list, or ``{"territories": [...], "source": ...}``, on success."""
        ...


class StaticTerritoryProvider:
    """Serves a fixed list of territories, e.g. one cached by the caller."""

    def __init__(self, territories: Iterable[TerritoryRecord], *, source: str = "static") -> None:
        self._territories = list(territories)
        self._source = source

    async def fetch_territories(self) -> OperationResult:
        return OperationResult.ok({"territories": list(self._territories), "source": self._source})


UNION_TERRITORY_NAMES = ("delhi", "chandigarh", "puducherry", "lakshadweep")


def _place_type_from_tags(tags: dict[str, Any]) -> str:
    place = tags.get("place")
    if place == "state":
        return "state"
    if place == "territory":
        return "union_territory"
    name = str(tags.get("name") or "").lower()
    if "territory" in name or "islands" in name or any(ut in name for ut in UNION_TERRITORY_NAMES):
        return "union_territory"
    return "state"


def parse_state_elements(payload: Any) -> list[TerritoryRecord]:
    """Turn an Overpass ``out tags`` payload into sorted territory records."""

    elements = payload.get("elements") if isinstance(payload, dict) else None
    if not elements:
        return []

    records: list[TerritoryRecord] = []
    for element in elements:
        tags = element.get("tags") or {}
        iso_code = tags.get("ISO3166-2")
        if not (tags.get("name") and element.get("id") and iso_code):
            continue
        if tags.get("country") != "IN" and not str(iso_code).startswith("IN-"):
            continue
        if not is_valid_iso_code(iso_code):
            continue
        records.append(
            TerritoryRecord(
                name=tags["name"],
                iso_code=iso_code,
                osm_relation_id=element["id"],
                place_type=_place_type_from_tags(tags),
                name_en=tags.get("name:en") or tags["name"],
            )
        )
    records.sort(key=lambda record: record.name)
    return records


class OverpassTerritoryProvider:
    """Fetches Indian states and union territories, falling back to embedded data."""

    def __init__(
        self,
        *,
        servers: Optional[list[str]] = None,
        timeout: Optional[float] = None,
        retry_delay: Optional[float] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._servers = list(servers or settings.overpass_servers)
        if not self._servers:
            raise RuntimeError("OVERPASS_SERVERS missing; configure at least one interpreter URL")
        self._timeout = timeout if timeout is not None else settings.overpass_timeout
        self._retry_delay = retry_delay if retry_delay is not None else settings.overpass_retry_delay
        self._transport = transport

    async def fetch_territories(self) -> OperationResult:
        try:
            records = await self._fetch_from_api()
        except Exception as exc:
            logger.warning("Overpass territory fetch failed, using embedded data: %s", exc)
            records = []

        if records:
            logger.info("Fetched %d territories from Overpass", len(records))
            return OperationResult.ok({"territories": records, "source": "api"})

        logger.info("Using embedded territory data (%d territories)", len(EMBEDDED_TERRITORIES))
        return OperationResult.ok({"territories": list(EMBEDDED_TERRITORIES), "source": "fallback"})

    async def _fetch_from_api(self) -> list[TerritoryRecord]:
        for index, template in enumerate(STATE_QUERIES, start=1):
            query = template.format(timeout=int(self._timeout))
            try:
                payload = await self.execute_query(query)
            except OverpassError as exc:
                logger.warning("Territory query %d/%d failed: %s", index, len(STATE_QUERIES), exc)
                continue
            records = parse_state_elements(payload)
            if records:
                return records
        return []

    async def execute_query(self, query: str) -> Any:
        """Run ``query`` against each configured server until one answers."""

        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for index, server in enumerate(self._servers):
                try:
                    return await self._query_server(client, server, query)
                except (OverpassError, httpx.HTTPError) as exc:
                    logger.warning("Overpass server %d/%d failed: %s", index + 1, len(self._servers), exc)
                    last_error = exc
                    if index < len(self._servers) - 1 and self._retry_delay > 0:
                        await asyncio.sleep(self._retry_delay)
        raise OverpassError(str(last_error) if last_error else "All Overpass servers failed")

    async def _query_server(self, client: httpx.AsyncClient, server: str, query: str) -> Any:
        try:
            resp = await client.get(
                server,
                params={"data": query},
                headers={
                    "Accept": "application/json,application/xml,text/xml,*/*",
                    "User-Agent": USER_AGENT,
                },
            )
        except httpx.TimeoutException as exc:
            raise OverpassError(f"Query timeout after {self._timeout:g} seconds") from exc

        if resp.status_code == 429:
            raise OverpassError(f"Rate limited (HTTP {resp.status_code}). Try again in a few minutes.")
        if resp.status_code in {502, 504}:
            raise OverpassError(f"Server timeout (HTTP {resp.status_code}). Try a simpler query.")
        if resp.is_error:
            raise OverpassError(f"HTTP {resp.status_code}: {resp.reason_phrase}")

        text = resp.text.strip()
        if text.startswith(("{", "[")):
            try:
                data = resp.json()
            except ValueError as exc:
                raise OverpassError(f"Invalid JSON response from {server}: {exc}") from exc
            remark = data.get("remark") if isinstance(data, dict) else None
            if remark and "error" in remark:
                raise OverpassError(f"Overpass API error: {remark}")
            return data
        if text.startswith("<"):
            return text
        raise OverpassError("Server returned unrecognized response format")
