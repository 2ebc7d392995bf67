"""Session endpoints used by participants and coordinators."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..models import schemas
from ..models.domain import OperationResult
from ..services.coordinator import SessionCoordinator, get_coordinator
from ..services.overpass import OverpassTerritoryProvider, TerritoryProvider

router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_territory_provider() -> TerritoryProvider:
    return OverpassTerritoryProvider()


def unwrap(result: OperationResult, *, not_found_status: int = 400):
    """Return the payload of a successful result or raise ``HTTPException``."""

    if result.success:
        return result.data
    status = not_found_status if result.kind == "not_found" else 400
    raise HTTPException(status_code=status, detail=result.error)


@router.post("/{session_id}/participants", response_model=schemas.RegistrationResponse)
async def register_participant(
    session_id: str,
    payload: schemas.RegistrationRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> schemas.RegistrationResponse:
    """Register a participant, creating the session on first registration."""

    data = unwrap(
        await coordinator.register_participant(payload.first_name, payload.osm_username, session_id)
    )
    context = data["context"]
    return schemas.RegistrationResponse(
        session_id=context.session_id,
        participant_id=context.participant_id,
        participant=data["participant"],
        message=data["message"],
    )


@router.get("/{session_id}/participants", response_model=schemas.ParticipantListResponse)
async def list_participants(
    session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.ParticipantListResponse:
    data = unwrap(await coordinator.get_session_participants(session_id))
    return schemas.ParticipantListResponse(session_id=session_id, participants=data["participants"])


@router.post("/{session_id}/setup", response_model=schemas.SetupSummaryResponse)
async def setup_session(
    session_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
    provider: TerritoryProvider = Depends(get_territory_provider),
) -> schemas.SetupSummaryResponse:
    """Form teams and distribute territories for a fully registered session."""

    data = unwrap(await coordinator.setup_session(session_id, provider))
    return schemas.SetupSummaryResponse(**data)


@router.get("/{session_id}/progress", response_model=schemas.SessionProgressResponse)
async def session_progress(
    session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.SessionProgressResponse:
    data = unwrap(await coordinator.get_session_progress(session_id))
    return schemas.SessionProgressResponse(**data)


@router.get("/{session_id}/leaderboard", response_model=schemas.ProcedureResponse)
async def session_leaderboard(
    session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.ProcedureResponse:
    data = unwrap(await coordinator.get_team_leaderboard(session_id))
    return schemas.ProcedureResponse(data=data["leaderboard"])


@router.get("/{session_id}/verification", response_model=schemas.ProcedureResponse)
async def session_verification(
    session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.ProcedureResponse:
    """Run the team and territory consistency checks for a session."""

    teams = unwrap(await coordinator.verify_session_teams(session_id))
    territories = unwrap(await coordinator.validate_territory_assignments(session_id))
    return schemas.ProcedureResponse(data={"teams": teams, "territories": territories})
