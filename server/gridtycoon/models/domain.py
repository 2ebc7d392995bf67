"""Domain records shared by the coordinator, territory providers and routers."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


TEAM_SIZE = 3

ASSIGNMENT_STATUSES = ("available", "current", "completed")

SESSION_TABLES = (
    "sessions",
    "participants",
    "teams",
    "team_members",
    "team_territories",
    "indian_territories",
)

_ISO_CODE_PATTERN = re.compile(r"^IN-[A-Z]{2,3}$")


@dataclass(frozen=True)
class TeamRole:
    name: str
    description: str
    icon: str

    def to_columns(self) -> dict[str, str]:
        """Return the ``team_members`` role columns for this role."""

        return {
            "role_name": self.name,
            "role_description": self.description,
            "role_icon": self.icon,
        }


TEAM_ROLES = (
    TeamRole(
        name="Pioneer",
        description="In charge of traditional style mapping of annotating on a map",
        icon="🗺️",
    ),
    TeamRole(
        name="Technician",
        description="Ensures assets are correctly named and missing voltages are added",
        icon="⚡",
    ),
    TeamRole(
        name="Seeker",
        description=(
            "Seeks out missing Power Plants, good first lines and available credible "
            "information sources, checks industries as well"
        ),
        icon="🔍",
    ),
)


def find_role(name: str) -> Optional[TeamRole]:
    for role in TEAM_ROLES:
        if role.name == name:
            return role
    return None


def is_valid_iso_code(iso_code: Any) -> bool:
    """Return True for Indian subdivision codes such as ``IN-MH``."""

    if not iso_code or not isinstance(iso_code, str):
        return False
    return bool(_ISO_CODE_PATTERN.match(iso_code.upper()))


def normalize_place_type(place: Optional[str]) -> str:
    if not place:
        return "state"
    if place.lower() in {"territory", "union_territory"}:
        return "union_territory"
    return "state"


@dataclass(slots=True)
class TerritoryRecord:
    """Territory as supplied by a territory provider."""

    name: str
    iso_code: str
    osm_relation_id: Optional[int] = None
    place_type: str = "state"
    name_en: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        """Return the ``indian_territories`` row used for upserts."""

        return {
            "name": self.name,
            "name_en": self.name_en or self.name,
            "iso_code": self.iso_code,
            "osm_relation_id": self.osm_relation_id,
            "place_type": normalize_place_type(self.place_type),
            "is_active": True,
            "area_km2": None,
            "population": None,
            "capital": None,
        }


@dataclass(slots=True)
class SessionContext:
    """Identifiers returned to a caller after registration."""

    session_id: str
    participant_id: str


class SetupFailure(str, Enum):
    INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
    INCOMPLETE_TEAM_COMPOSITION = "incomplete_team_composition"
    ROSTER_UNAVAILABLE = "roster_unavailable"
    TERRITORY_SOURCE_UNAVAILABLE = "territory_source_unavailable"
    TEAM_CREATION_FAILED = "team_creation_failed"
    TERRITORY_DISTRIBUTION_FAILED = "territory_distribution_failed"


VALIDATION_FAILURE = "validation"


@dataclass(slots=True)
class OperationResult:
    """Uniform outcome of every coordinator operation.

    ``kind`` is a machine-readable failure category: an ``ErrorKind`` value for
    store failures, a ``SetupFailure`` value for the setup workflow, or
    ``"validation"`` for rejected input.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, kind: Optional[str] = None) -> "OperationResult":
        if isinstance(kind, Enum):
            kind = kind.value
        return cls(success=False, error=error, kind=kind)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
            if self.kind:
                payload["kind"] = self.kind
        return payload


@dataclass(slots=True)
class SetupSummary:
    session_id: str
    participants_total: int
    teams_created: int
    territories_distributed: int = 0
    territories_populated: bool = True
    team_details: Any = None
    territory_details: Any = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
