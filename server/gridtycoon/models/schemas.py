"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RegistrationRequest(BaseModel):
    """Incoming payload for registering a participant in a session."""

    first_name: str = Field(..., description="Participant's first name")
    osm_username: str = Field(..., description="OpenStreetMap username")


class RegistrationResponse(BaseModel):
    session_id: str
    participant_id: str
    participant: Dict[str, Any]
    message: str = "Registration successful"


class ParticipantListResponse(BaseModel):
    session_id: str
    participants: List[Dict[str, Any]] = Field(default_factory=list)


class SetupSummaryResponse(BaseModel):
    """Outcome of the coordinator setup workflow."""

    session_id: str
    participants_total: int
    teams_created: int
    territories_distributed: int = 0
    territories_populated: bool = True
    team_details: Optional[Any] = None
    territory_details: Optional[Any] = None
    warnings: List[str] = Field(default_factory=list)


class SessionProgressResponse(BaseModel):
    session_id: str
    session_status: str = "unknown"
    team_count: int = 0
    total_territories: int = 0
    completed_territories: int = 0
    completion_percentage: float = 0
    teams_data: List[Any] = Field(default_factory=list)
    leaderboard: List[Any] = Field(default_factory=list)


class TeamInfoResponse(BaseModel):
    participant_id: str
    team_info: Optional[Dict[str, Any]] = Field(
        default=None, description="Team, roster and role; null until teams are formed"
    )


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="One of available, current, completed")
    participant_id: Optional[str] = Field(default=None, description="Participant making the change")
    notes: Optional[str] = None


class ProcedureResponse(BaseModel):
    """Raw result of a diagnostic or status procedure."""

    data: Optional[Any] = None
