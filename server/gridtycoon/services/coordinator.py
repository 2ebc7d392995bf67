"""Session coordination facade over the Grid Tycoon Supabase project.

Team formation, territory distribution and progress aggregation live in
stored procedures; this module marshals parameters, sequences calls and
normalizes failures into ``OperationResult`` values.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Iterable, Optional

from ..models.domain import (
    ASSIGNMENT_STATUSES,
    SESSION_TABLES,
    TEAM_ROLES,
    TEAM_SIZE,
    VALIDATION_FAILURE,
    OperationResult,
    SessionContext,
    SetupFailure,
    SetupSummary,
    TerritoryRecord,
    find_role,
)
from .overpass import TerritoryProvider
from .supabase_store import ErrorKind, StoreError, SupabaseStore, describe_error

logger = logging.getLogger(__name__)

VERSION = "3.2"

MEMBER_COLUMNS = "role_name, role_description, role_icon, participants (id, first_name, osm_username)"
MEMBERSHIP_COLUMNS = (
    "role_name, role_description, role_icon, teams (id, team_name, team_index, session_id)"
)
ASSIGNMENT_COLUMNS = (
    "id, status, assigned_at, started_at, completed_at, completed_by, notes, "
    "indian_territories (name, name_en, iso_code, osm_relation_id, place_type)"
)


def _require(*fields: tuple[str, Optional[str]]) -> Optional[OperationResult]:
    """Return a validation failure for the first blank ``(label, value)`` pair."""

    for label, value in fields:
        if not isinstance(value, str) or not value.strip():
            return OperationResult.fail(f"{label} is required", VALIDATION_FAILURE)
    return None


def _store_failure(error: StoreError, context: str) -> OperationResult:
    logger.error("Database error in %s: [%s] %s", context, error.kind.value, error.message)
    return OperationResult.fail(describe_error(error, context), error.kind)


def _flatten_assignment(assignment: dict[str, Any]) -> dict[str, Any]:
    territory = assignment.get("indian_territories") or {}
    iso_code = territory.get("iso_code")
    return {
        "id": assignment.get("id"),
        "territory_name": territory.get("name"),
        "territory_osm_id": territory.get("osm_relation_id"),
        "iso_code": iso_code,
        "place_type": territory.get("place_type"),
        "status": assignment.get("status"),
        "assigned_at": assignment.get("assigned_at"),
        "started_at": assignment.get("started_at"),
        "completed_at": assignment.get("completed_at"),
        "completed_by": assignment.get("completed_by"),
        "notes": assignment.get("notes"),
        "overpass_ready": bool(iso_code),
    }


def _territory_list(payload: Any) -> Optional[list[Any]]:
    """Pull the territory list out of a provider payload.

    Providers return either the list itself or ``{"territories": [...], ...}``.
    Any other shape yields ``None``.
    """

    if isinstance(payload, dict):
        payload = payload.get("territories")
    if isinstance(payload, (list, tuple)):
        return list(payload)
    return None


class SessionCoordinator:
    """Registers participants, sets up sessions and reports progress."""

    def __init__(self, store: SupabaseStore | None = None) -> None:
        self._store = store if store is not None else SupabaseStore()

    # Connection ---------------------------------------------------------

    async def test_connection(self) -> OperationResult:
        """Check that the ``sessions`` table is reachable."""

        try:
            await self._store.select("sessions", columns="id", limit=1)
        except StoreError as exc:
            return _store_failure(exc, "Connection test failed")
        logger.info("Supabase connection successful")
        return OperationResult.ok({"connected": True, "tables_accessible": True})

    # Participants and sessions -----------------------------------------

    async def register_participant(
        self, first_name: str, osm_username: str, session_id: str
    ) -> OperationResult:
        """Register a participant, creating the session on first use.

        The returned data carries a ``SessionContext`` so callers can thread the
        new participant id through later calls.
        """

        invalid = _require(
            ("First name", first_name),
            ("OSM username", osm_username),
            ("Session ID", session_id),
        )
        if invalid:
            return invalid

        session_id = session_id.strip()
        logger.info("Registering participant %s (@%s) for session %s", first_name, osm_username, session_id)

        session_result = await self.ensure_session_exists(session_id)
        if not session_result.success:
            return session_result

        row = {
            "first_name": first_name.strip(),
            "osm_username": osm_username.strip(),
            "session_id": session_id,
        }
        try:
            inserted = await self._store.insert("participants", [row])
        except StoreError as exc:
            return _store_failure(exc, "Registration failed")
        if not inserted:
            return OperationResult.fail("Registration failed: no participant row returned", ErrorKind.UNKNOWN)

        participant = inserted[0]
        context = SessionContext(session_id=session_id, participant_id=participant["id"])
        return OperationResult.ok(
            {
                "participant": participant,
                "context": context,
                "message": "Registration successful",
            }
        )

    async def ensure_session_exists(self, session_id: str) -> OperationResult:
        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()

        try:
            existing = await self._store.select(
                "sessions", columns="id", filters={"id": session_id}, single=True
            )
        except StoreError as exc:
            if exc.kind is not ErrorKind.NOT_FOUND:
                return _store_failure(exc, "Failed to check session")
            existing = None

        if existing:
            return OperationResult.ok({"session": existing, "created": False})

        row = {"id": session_id, "name": f"Session {session_id}", "status": "registering"}
        try:
            created = await self._store.insert("sessions", [row])
        except StoreError as exc:
            return _store_failure(exc, "Failed to create session")
        logger.info("Created new session: %s", session_id)
        return OperationResult.ok({"session": created[0] if created else row, "created": True})

    async def get_user_by_osm_username(
        self, osm_username: str, session_id: Optional[str] = None
    ) -> OperationResult:
        invalid = _require(("OSM username", osm_username))
        if invalid:
            return invalid

        filters = {"osm_username": osm_username.strip()}
        if session_id and session_id.strip():
            filters["session_id"] = session_id.strip()
        try:
            user = await self._store.select("participants", filters=filters, single=True)
        except StoreError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return OperationResult.ok({"user": None})
            return _store_failure(exc, "Failed to fetch user")
        return OperationResult.ok({"user": user})

    async def get_user_team_info(self, participant_id: str) -> OperationResult:
        """Return the participant's team, its full roster and the participant's role."""

        invalid = _require(("Participant ID", participant_id))
        if invalid:
            return invalid

        try:
            membership = await self._store.select(
                "team_members",
                columns=MEMBERSHIP_COLUMNS,
                filters={"participant_id": participant_id},
                single=True,
            )
        except StoreError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return OperationResult.ok({"team_info": None})
            return _store_failure(exc, "Failed to get team info")

        team = membership.get("teams") or {}
        try:
            members = await self._store.select(
                "team_members", columns=MEMBER_COLUMNS, filters={"team_id": team.get("id")}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to get team members")

        team_info = {
            **team,
            "members": members or [],
            "user_role": {
                "role_name": membership.get("role_name"),
                "role_description": membership.get("role_description"),
                "role_icon": membership.get("role_icon"),
            },
        }
        return OperationResult.ok({"team_info": team_info})

    async def get_session_participants(self, session_id: str) -> OperationResult:
        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()
        try:
            participants = await self._store.select(
                "participants", filters={"session_id": session_id}, order="created_at"
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to fetch participants")
        return OperationResult.ok({"participants": participants or []})

    async def get_session_participants_detailed(self, session_id: str) -> OperationResult:
        return await self._session_procedure(
            "get_session_participants_detailed", session_id, "Failed to fetch detailed participants"
        )

    # Teams ----------------------------------------------------------------

    async def create_teams_for_session(self, session_id: str) -> OperationResult:
        """Run the team formation procedure for ``session_id``."""

        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()

        roster = await self.get_session_participants(session_id)
        if not roster.success:
            return OperationResult.fail(f"Failed to verify participants: {roster.error}", roster.kind)

        participant_ids = [participant["id"] for participant in roster.data["participants"]]
        if participant_ids:
            try:
                foreign = await self._store.select(
                    "participants",
                    columns="id, session_id",
                    exclude={"session_id": session_id},
                    within={"id": participant_ids},
                )
            except StoreError as exc:
                # The membership trigger rejects cross-session rows anyway.
                logger.warning("Session isolation pre-check failed: %s", exc.message)
            else:
                if foreign:
                    return OperationResult.fail(
                        f"Session isolation violation detected: {len(foreign)} participants "
                        "belong to other sessions",
                        VALIDATION_FAILURE,
                    )

        try:
            data = await self._store.rpc(
                "create_teams_with_role_assignment",
                {"session_id_param": session_id, "desired_team_size": TEAM_SIZE},
            )
        except StoreError as exc:
            return _store_failure(exc, "Team creation failed")
        logger.info("Teams created for session %s: %s", session_id, data)
        return OperationResult.ok(data)

    async def get_session_teams(self, session_id: str) -> OperationResult:
        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()
        try:
            teams = await self._store.select(
                "teams",
                columns="id, team_name, team_index",
                filters={"session_id": session_id},
                order="team_index",
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to fetch teams")
        return OperationResult.ok({"teams": teams or []})

    async def get_team_details(self, team_id: str) -> OperationResult:
        invalid = _require(("Team ID", team_id))
        if invalid:
            return invalid

        try:
            team = await self._store.select(
                "teams",
                columns="id, team_name, team_index, session_id",
                filters={"id": team_id},
                single=True,
            )
        except StoreError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return OperationResult.ok({"team": None, "members": [], "territories": []})
            return _store_failure(exc, "Failed to fetch team info")

        try:
            members = await self._store.select(
                "team_members", columns=MEMBER_COLUMNS, filters={"team_id": team_id}, order="role_name"
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to fetch team members")

        territories = await self.get_team_territories(team_id)
        if not territories.success:
            return territories

        return OperationResult.ok(
            {
                "team": team,
                "members": members or [],
                "territories": territories.data["territories"],
            }
        )

    async def update_team_member_role(self, participant_id: str, role_name: str) -> OperationResult:
        invalid = _require(("Participant ID", participant_id), ("Role name", role_name))
        if invalid:
            return invalid

        role = find_role(role_name)
        if role is None:
            names = ", ".join(r.name for r in TEAM_ROLES)
            return OperationResult.fail(
                f"Invalid role: {role_name}. Must be one of {names}.", VALIDATION_FAILURE
            )

        try:
            updated = await self._store.update(
                "team_members", role.to_columns(), filters={"participant_id": participant_id}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to update role")
        if not updated:
            return _store_failure(
                StoreError(ErrorKind.NOT_FOUND, "no team membership"), "Failed to update role"
            )

        logger.info("Role for participant %s set to %s", participant_id, role.name)
        return OperationResult.ok({"participant_id": participant_id, **role.to_columns()})

    async def _shared_session(
        self, participant_id: str, team_id: str
    ) -> tuple[Optional[str], Optional[OperationResult]]:
        """Return the session both records belong to, or a failure."""

        try:
            participant = await self._store.select(
                "participants", columns="session_id", filters={"id": participant_id}, single=True
            )
        except StoreError as exc:
            return None, _store_failure(exc, "Failed to fetch participant")
        try:
            team = await self._store.select(
                "teams", columns="session_id", filters={"id": team_id}, single=True
            )
        except StoreError as exc:
            return None, _store_failure(exc, "Failed to fetch team")

        if participant["session_id"] != team["session_id"]:
            return None, OperationResult.fail(
                f'Session isolation violation: Participant belongs to session "{participant["session_id"]}" '
                f'but team belongs to session "{team["session_id"]}". '
                "Cross-session team assignments are not allowed.",
                VALIDATION_FAILURE,
            )
        return participant["session_id"], None

    async def update_team_member_team(self, participant_id: str, team_id: str) -> OperationResult:
        invalid = _require(("Participant ID", participant_id), ("Team ID", team_id))
        if invalid:
            return invalid

        session_id, failure = await self._shared_session(participant_id, team_id)
        if failure:
            return failure

        try:
            updated = await self._store.update(
                "team_members", {"team_id": team_id}, filters={"participant_id": participant_id}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to update team assignment")
        if not updated:
            return _store_failure(
                StoreError(ErrorKind.NOT_FOUND, "no team membership"), "Failed to update team assignment"
            )

        return OperationResult.ok(
            {"participant_id": participant_id, "team_id": team_id, "session_id": session_id}
        )

    async def assign_participant_to_team(
        self, participant_id: str, team_id: str, role_name: str
    ) -> OperationResult:
        invalid = _require(
            ("Participant ID", participant_id), ("Team ID", team_id), ("Role name", role_name)
        )
        if invalid:
            return invalid

        role = find_role(role_name)
        if role is None:
            names = ", ".join(r.name for r in TEAM_ROLES)
            return OperationResult.fail(
                f"Invalid role: {role_name}. Must be one of {names}.", VALIDATION_FAILURE
            )

        session_id, failure = await self._shared_session(participant_id, team_id)
        if failure:
            return failure

        row = {"participant_id": participant_id, "team_id": team_id, **role.to_columns()}
        try:
            await self._store.insert("team_members", [row])
        except StoreError as exc:
            return _store_failure(exc, "Failed to assign participant to team")

        return OperationResult.ok({**row, "session_id": session_id})

    # Territories ----------------------------------------------------------

    async def populate_territories(
        self, territories: Iterable[TerritoryRecord | dict[str, Any]]
    ) -> OperationResult:
        """Upsert territories keyed by ISO code; existing rows are updated."""

        rows = [
            territory.to_row() if isinstance(territory, TerritoryRecord) else dict(territory)
            for territory in territories
        ]
        logger.info("Populating territories table with %d territories", len(rows))
        try:
            stored = await self._store.upsert("indian_territories", rows, on_conflict="iso_code")
        except StoreError as exc:
            return _store_failure(exc, "Territory population failed")
        return OperationResult.ok({"territories": stored, "count": len(rows)})

    async def assign_territories_to_teams(self, session_id: str) -> OperationResult:
        return await self._session_procedure(
            "distribute_territories_to_teams", session_id, "Territory distribution failed"
        )

    async def get_team_territories(self, team_id: str) -> OperationResult:
        invalid = _require(("Team ID", team_id))
        if invalid:
            return invalid
        try:
            assignments = await self._store.select(
                "team_territories", columns=ASSIGNMENT_COLUMNS, filters={"team_id": team_id}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to fetch team territories")

        territories = [_flatten_assignment(assignment) for assignment in assignments or []]
        territories.sort(key=lambda territory: territory["territory_name"] or "")
        return OperationResult.ok({"territories": territories})

    async def get_territory_for_overpass(self, assignment_id: str) -> OperationResult:
        invalid = _require(("Assignment ID", assignment_id))
        if invalid:
            return invalid
        try:
            data = await self._store.rpc(
                "get_territory_for_overpass_operations", {"assignment_id_param": assignment_id}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to get territory data")
        if not data:
            return OperationResult.fail("Territory assignment not found", ErrorKind.NOT_FOUND)
        return OperationResult.ok(data)

    async def update_territory_status(
        self,
        assignment_id: str,
        new_status: str,
        participant_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """Advance an assignment through ``available`` -> ``current`` -> ``completed``.

        Ordering of transitions is enforced by the procedure, not here.
        """

        invalid = _require(("Assignment ID", assignment_id), ("Status", new_status))
        if invalid:
            return invalid
        if new_status not in ASSIGNMENT_STATUSES:
            return OperationResult.fail(
                f"Invalid status: {new_status}. Must be one of {', '.join(ASSIGNMENT_STATUSES)}.",
                VALIDATION_FAILURE,
            )

        try:
            data = await self._store.rpc(
                "update_territory_assignment_status",
                {
                    "assignment_id_param": assignment_id,
                    "new_status_param": new_status,
                    "participant_id_param": participant_id,
                    "notes_param": notes,
                },
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to update territory status")
        logger.info("Territory assignment %s status updated to %s", assignment_id, new_status)
        return OperationResult.ok(data)

    # Coordinator workflow -------------------------------------------------

    async def setup_session(self, session_id: str, territory_provider: TerritoryProvider) -> OperationResult:
        """Validate the roster, load territories, form teams and distribute territories.

        Steps run in order and stop at the first fatal failure. Territory
        population failing is logged and tolerated because rows from an earlier
        run may already be present. Nothing is rolled back: teams created before
        a distribution failure stay in place.
        """

        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()
        logger.info("Starting coordinator setup for session %s", session_id)

        roster = await self.get_session_participants(session_id)
        if not roster.success:
            return OperationResult.fail(
                f"Failed to verify participants: {roster.error}", SetupFailure.ROSTER_UNAVAILABLE
            )

        participants_total = len(roster.data["participants"])
        if participants_total < TEAM_SIZE:
            return OperationResult.fail(
                f"Need at least {TEAM_SIZE} participants to form teams, found {participants_total}",
                SetupFailure.INSUFFICIENT_PARTICIPANTS,
            )
        remainder = participants_total % TEAM_SIZE
        if remainder:
            needed = TEAM_SIZE - remainder
            return OperationResult.fail(
                f"{participants_total} participants cannot be split into teams of {TEAM_SIZE}. "
                f"Add {needed} more participant(s) or remove {remainder} to complete the teams.",
                SetupFailure.INCOMPLETE_TEAM_COMPOSITION,
            )
        team_count = participants_total // TEAM_SIZE
        logger.info("%d participants will form %d teams", participants_total, team_count)

        try:
            fetched = await territory_provider.fetch_territories()
        except Exception as exc:
            logger.exception("Territory provider raised")
            fetched = OperationResult.fail(str(exc))
        territories = _territory_list(fetched.data) if fetched.success else None
        if not territories:
            if not fetched.success:
                reason = fetched.error or "territory provider failed"
            elif territories is None:
                reason = "unrecognized territory payload"
            else:
                reason = "no territories returned"
            return OperationResult.fail(
                f"Failed to fetch territories from Overpass API: {reason}",
                SetupFailure.TERRITORY_SOURCE_UNAVAILABLE,
            )
        logger.info("Retrieved %d territories", len(territories))

        warnings: list[str] = []
        populated = await self.populate_territories(territories)
        if not populated.success:
            logger.warning("Territory population had issues: %s", populated.error)
            warnings.append(populated.error)

        teams = await self.create_teams_for_session(session_id)
        if not teams.success:
            return OperationResult.fail(
                f"Team creation failed: {teams.error}", SetupFailure.TEAM_CREATION_FAILED
            )

        distribution = await self.assign_territories_to_teams(session_id)
        if not distribution.success:
            return OperationResult.fail(
                f"Territory distribution failed: {distribution.error}",
                SetupFailure.TERRITORY_DISTRIBUTION_FAILED,
            )

        distribution_data = distribution.data if isinstance(distribution.data, dict) else {}
        summary = SetupSummary(
            session_id=session_id,
            participants_total=participants_total,
            teams_created=team_count,
            territories_distributed=distribution_data.get("territories_distributed") or 0,
            territories_populated=populated.success,
            team_details=teams.data,
            territory_details=distribution.data,
            warnings=warnings,
        )
        logger.info("Coordinator setup completed for session %s", session_id)
        return OperationResult.ok(summary.to_dict())

    # Progress and diagnostics ---------------------------------------------

    async def get_session_progress(self, session_id: str) -> OperationResult:
        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()
        try:
            data = await self._store.rpc(
                "get_session_progress_overview", {"session_id_param": session_id}
            )
        except StoreError as exc:
            return _store_failure(exc, "Failed to get session progress")

        data = data or {}
        leaderboard = await self.get_team_leaderboard(session_id)
        return OperationResult.ok(
            {
                "session_id": session_id,
                "session_status": data.get("session_status") or "unknown",
                "team_count": data.get("team_count") or 0,
                "total_territories": data.get("total_territories") or 0,
                "completed_territories": data.get("completed_territories") or 0,
                "completion_percentage": data.get("completion_percentage") or 0,
                "teams_data": data.get("teams_data") or [],
                "leaderboard": leaderboard.data["leaderboard"] if leaderboard.success else [],
            }
        )

    async def get_team_leaderboard(self, session_id: str) -> OperationResult:
        result = await self._session_procedure(
            "get_team_leaderboard_for_session", session_id, "Failed to get leaderboard"
        )
        if not result.success:
            return result
        return OperationResult.ok({"leaderboard": result.data or []})

    async def verify_session_teams(self, session_id: str) -> OperationResult:
        return await self._session_procedure("verify_session_teams", session_id, "Failed to verify teams")

    async def validate_territory_assignments(self, session_id: str) -> OperationResult:
        return await self._session_procedure(
            "validate_territory_assignments", session_id, "Failed to validate territories"
        )

    async def get_territory_statistics(self) -> OperationResult:
        try:
            data = await self._store.rpc("get_territory_statistics")
        except StoreError as exc:
            return _store_failure(exc, "Failed to get territory statistics")
        return OperationResult.ok(data)

    async def validate_database_schema(self) -> OperationResult:
        """Probe each table and report which ones are readable."""

        table_access: dict[str, str] = {}
        for table in SESSION_TABLES:
            try:
                await self._store.select(table, limit=1)
            except StoreError as exc:
                table_access[table] = f"Error: {exc.message}"
            else:
                table_access[table] = "Accessible"
        return OperationResult.ok(
            {
                "table_access": table_access,
                "recommendation": "Run the complete SQL schema if any tables show errors",
            }
        )

    def get_manager_stats(self) -> dict[str, Any]:
        return {
            "connected": self._store.enabled,
            "database_url": self._store.url,
            "team_roles": len(TEAM_ROLES),
            "version": VERSION,
            "features": [
                "ISO code support",
                "Detailed participant views",
                "Territory validation",
                "Team verification",
                "Session progress tracking",
                "Coordinator dashboard",
            ],
        }

    async def _session_procedure(self, name: str, session_id: str, context: str) -> OperationResult:
        invalid = _require(("Session ID", session_id))
        if invalid:
            return invalid
        session_id = session_id.strip()
        try:
            data = await self._store.rpc(name, {"session_id_param": session_id})
        except StoreError as exc:
            return _store_failure(exc, context)
        return OperationResult.ok(data)


@lru_cache(maxsize=1)
def get_coordinator() -> SessionCoordinator:
    """Return the process-wide coordinator used by the HTTP routers."""

    return SessionCoordinator()
