"""Participant and territory assignment endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..models import schemas
from ..services.coordinator import SessionCoordinator, get_coordinator
from .sessions import unwrap

router = APIRouter(tags=["participants"])


@router.get("/participants/{participant_id}/team", response_model=schemas.TeamInfoResponse)
async def participant_team(
    participant_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.TeamInfoResponse:
    data = unwrap(await coordinator.get_user_team_info(participant_id))
    return schemas.TeamInfoResponse(participant_id=participant_id, team_info=data["team_info"])


@router.get("/assignments/{assignment_id}/overpass", response_model=schemas.ProcedureResponse)
async def assignment_overpass_parameters(
    assignment_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)
) -> schemas.ProcedureResponse:
    data = unwrap(await coordinator.get_territory_for_overpass(assignment_id), not_found_status=404)
    return schemas.ProcedureResponse(data=data)


@router.post("/assignments/{assignment_id}/status", response_model=schemas.ProcedureResponse)
async def update_assignment_status(
    assignment_id: str,
    payload: schemas.StatusUpdateRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> schemas.ProcedureResponse:
    """Advance a team's territory assignment to a new status."""

    data = unwrap(
        await coordinator.update_territory_status(
            assignment_id, payload.status, payload.participant_id, payload.notes
        ),
        not_found_status=404,
    )
    return schemas.ProcedureResponse(data=data)
