"""
Membership Reconciliation Engine.

Keeps event sub-teams in sync with RSVP attendance and the external workshop
service. A sync runs three passes in order:

1. mirror_external_teams     external workshop teams -> local sub-teams
2. push_external_membership  local members -> external teams (by email)
3. assign_and_remove         declined removal first, then first-fit
                             auto-assign of confirmed attendees

Rosters are re-read from the store before each decision. Failures of single
external member operations are logged and counted; they never abort a pass.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..adapters.base import WorkshopAdapter, bounded_call
from ..config import Settings
from ..errors import InvalidStateError, NotFoundError
from ..storage.event_store import EventStore
from ..storage.models import EventInfo, EventTeamInfo, EventTeamMemberInfo, RSVPStatus
from ..tasks.task_store import TaskStore
from .models import SwitchResult, SyncMode, SyncResult, UnassignedAttendee

logger = logging.getLogger(__name__)

COUNTERS = (
    "users_assigned",
    "users_removed",
    "teams_updated",
    "teams_created",
    "external_syncs",
    "external_failures",
)


class ReconciliationEngine:
    """
    Event sub-team reconciliation and management.

    Usage:
        engine = ReconciliationEngine(settings, event_store, workshop, task_store)
        result = await engine.sync(event.id, SyncMode.SYNC_ALL)
    """

    def __init__(
        self,
        settings: Settings,
        event_store: EventStore,
        workshop: Optional[WorkshopAdapter] = None,
        task_store: Optional[TaskStore] = None,
    ):
        self.settings = settings
        self.event_store = event_store
        self.workshop = workshop
        self.task_store = task_store

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync(
        self,
        event_id: str,
        mode: SyncMode,
        members_per_team: Optional[int] = None,
        task_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Reconcile an event's sub-teams.

        Args:
            event_id: Event to reconcile
            mode: auto_assign, remove_declined or sync_all
            members_per_team: Capacity override
            task_id: Task whose subtasks record per-pass progress

        Returns:
            SyncResult counters

        Raises:
            NotFoundError: Unknown event
        """
        mode = SyncMode(mode)
        event = self.event_store.require_event(event_id)
        capacity = self.capacity_for(event, members_per_team)
        result = SyncResult(event_id=event_id, mode=mode, capacity=capacity)
        logger.info(f"Sync started: event={event_id} mode={mode.value} capacity={capacity}")

        passes: List[Tuple[str, Callable]] = [
            ("mirror_external_teams", self._mirror_external_teams),
            ("push_external_membership", self._push_external_membership),
            ("assign_and_remove", self._assign_and_remove),
        ]
        progress = {}
        if task_id and self.task_store is not None:
            task = self.task_store.get_task(task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            progress = {sub.name: sub for sub in task.subtasks}

        for name, run_pass in passes:
            subtask = progress.get(name)
            if subtask is not None and subtask.is_terminal:
                self._merge(result, subtask.result or {})
                logger.info(f"Pass {name} already finished in a previous attempt")
                continue
            if subtask is not None:
                self.task_store.mark_subtask_running(task_id, subtask.index)

            before = result.model_copy(deep=True)
            try:
                await run_pass(event, result)
            except Exception as e:
                message = f"{name}: {e}"
                logger.error(f"Sync pass failed: {message}")
                result.errors.append(message)
                if subtask is not None:
                    self.task_store.mark_subtask_failed(task_id, subtask.index, str(e))
                if isinstance(e, (NotFoundError, InvalidStateError)):
                    raise
                continue
            if subtask is not None:
                self.task_store.mark_subtask_completed(task_id, subtask.index, self._delta(before, result))

        logger.info(
            f"Sync finished: event={event_id} assigned={result.users_assigned} "
            f"removed={result.users_removed} teams_updated={result.teams_updated} "
            f"external_syncs={result.external_syncs} failures={result.external_failures} "
            f"unassigned={len(result.unassigned)}"
        )
        return result

    def capacity_for(self, event: EventInfo, members_per_team: Optional[int] = None) -> int:
        """Explicit argument, then the event's setting, then the configured default."""
        return members_per_team or event.members_per_team or self.settings.default_members_per_team

    # =========================================================================
    # Passes
    # =========================================================================

    async def _mirror_external_teams(self, event: EventInfo, result: SyncResult) -> None:
        if not event.workshop_id or self.workshop is None:
            return

        external_teams = await self._call(self.workshop.list_workshop_teams(event.workshop_id))
        local = self.event_store.list_event_teams(event.id)
        by_number = {t.team_number: t for t in local}
        known_external = {t.external_team_id for t in local if t.external_team_id}

        for ext in external_teams:
            if ext.team_number is None:
                # Numberless teams can only be recognized by their id.
                if ext.id in known_external:
                    continue
            elif ext.team_number in by_number:
                existing = by_number[ext.team_number]
                if existing.external_team_id != ext.id:
                    self.event_store.set_external_team_id(existing.id, ext.id)
                    known_external.add(ext.id)
                    result.teams_updated += 1
                continue

            created = self.event_store.create_event_team(
                event.id, team_number=ext.team_number, name=ext.name, external_team_id=ext.id
            )
            by_number[created.team_number] = created
            known_external.add(ext.id)
            result.teams_updated += 1
            logger.info(f"Mirrored workshop team {ext.id} as team {created.team_number}")

    async def _push_external_membership(self, event: EventInfo, result: SyncResult) -> None:
        if self.workshop is None:
            return
        for team in self.event_store.list_event_teams(event.id):
            if not team.external_team_id:
                continue
            for member in team.members:
                syncs, failures = await self._add_external(team.external_team_id, member.email)
                result.external_syncs += syncs
                result.external_failures += failures

    async def _assign_and_remove(self, event: EventInfo, result: SyncResult) -> None:
        if result.mode.removes:
            await self._remove_declined(event, result)
        if result.mode.assigns:
            await self._auto_assign(event, result)

    async def _remove_declined(self, event: EventInfo, result: SyncResult) -> None:
        statuses = self.event_store.rsvp_statuses(event.id)
        for team in self.event_store.list_event_teams(event.id):
            for member in team.members:
                if statuses.get(member.user_id) != RSVPStatus.DECLINED:
                    continue
                self.event_store.remove_event_team_member(team.id, member.user_id)
                result.users_removed += 1
                logger.info(f"Removed declined {member.email} from team {team.team_number}")
                if team.external_team_id:
                    syncs, failures = await self._remove_external(team.external_team_id, member.email)
                    result.external_syncs += syncs
                    result.external_failures += failures

    async def _auto_assign(self, event: EventInfo, result: SyncResult) -> None:
        capacity = result.capacity
        confirmed = self.event_store.confirmed_attendees(event.id)

        if event.auto_create_teams:
            needed = max(1, math.ceil(len(confirmed) / capacity))
            existing = len(self.event_store.list_event_teams(event.id))
            for _ in range(needed - existing):
                self.event_store.create_event_team(event.id)
                result.teams_created += 1

        teams = self.event_store.list_event_teams(event.id)
        assigned = {m.user_id for team in teams for m in team.members}

        for attendee in confirmed:
            if attendee.user_id in assigned:
                continue
            target = next((t for t in teams if len(t.members) < capacity), None)
            if target is None:
                result.unassigned.append(
                    UnassignedAttendee(user_id=attendee.user_id, email=attendee.email, reason="no_capacity")
                )
                continue

            self.event_store.add_event_team_member(target.id, attendee.user_id, attendee.email)
            target.members.append(EventTeamMemberInfo(user_id=attendee.user_id, email=attendee.email))
            assigned.add(attendee.user_id)
            result.users_assigned += 1
            logger.info(f"Assigned {attendee.email} to team {target.team_number}")

            if target.external_team_id:
                syncs, failures = await self._add_external(target.external_team_id, attendee.email)
                result.external_syncs += syncs
                result.external_failures += failures

        if result.unassigned:
            logger.warning(f"{len(result.unassigned)} confirmed attendees left without a team")

    # =========================================================================
    # Sub-team management
    # =========================================================================

    def create_event_team(self, event_id: str, name: Optional[str] = None) -> EventTeamInfo:
        """Create a sub-team numbered one past the current maximum."""
        event = self.event_store.require_event(event_id)
        if not event.teams_enabled:
            raise InvalidStateError(f"Teams are not enabled for event {event_id}")
        return self.event_store.create_event_team(event_id, name=name)

    async def switch_member(self, event_id: str, user_id: str, target_team_id: int) -> SwitchResult:
        """
        Move an attendee to another sub-team of the same event.

        The local move always happens; external updates are best-effort and
        reported in the returned counters.

        Raises:
            NotFoundError: Unknown event or target team
            InvalidStateError: Teams or switching disabled, target full,
                user not on a team, or already on the target
        """
        event = self.event_store.require_event(event_id)
        if not event.teams_enabled:
            raise InvalidStateError(f"Teams are not enabled for event {event_id}")
        if not event.allow_team_switching:
            raise InvalidStateError(f"Team switching is not allowed for event {event_id}")

        teams = self.event_store.list_event_teams(event_id)
        target = next((t for t in teams if t.id == target_team_id), None)
        if target is None:
            raise NotFoundError(f"Team {target_team_id} not found in event {event_id}")
        current = next((t for t in teams if t.has_member(user_id)), None)
        if current is None:
            raise InvalidStateError(f"User {user_id} is not assigned to a team")
        if current.id == target.id:
            raise InvalidStateError("User is already in this team")
        if len(target.members) >= self.capacity_for(event):
            raise InvalidStateError(f"Team {target.team_number} is full")

        email = next(m.email for m in current.members if m.user_id == user_id)
        self.event_store.remove_event_team_member(current.id, user_id)
        self.event_store.add_event_team_member(target.id, user_id, email)
        logger.info(f"Switched {email} from team {current.team_number} to {target.team_number}")

        outcome = SwitchResult(
            event_id=event_id, user_id=user_id, from_team_id=current.id, to_team_id=target.id
        )
        if self.workshop is None:
            return outcome

        if current.external_team_id:
            syncs, failures = await self._remove_external(current.external_team_id, email)
            outcome.external_syncs += syncs
            outcome.external_failures += failures
        if target.external_team_id:
            syncs, failures = await self._add_external(target.external_team_id, email)
            outcome.external_syncs += syncs
            outcome.external_failures += failures
        if outcome.external_failures:
            outcome.warnings.append("External workshop update incomplete - check the workshop teams")
        return outcome

    def teardown_event_teams(self, event_id: str) -> int:
        """Delete every sub-team of an event. Returns the number deleted."""
        self.event_store.require_event(event_id)
        return self.event_store.delete_event_teams(event_id)

    # =========================================================================
    # External helpers
    # =========================================================================

    async def _call(self, awaitable):
        return await bounded_call("workshop", awaitable, self.settings.adapter_call_timeout_seconds)

    async def _add_external(self, external_team_id: str, email: str) -> Tuple[int, int]:
        try:
            await self._call(self.workshop.add_team_member_by_email(external_team_id, email))
        except Exception as e:
            logger.warning(f"Failed to add {email} to workshop team {external_team_id}: {e}")
            return 0, 1
        return 1, 0

    async def _remove_external(self, external_team_id: str, email: str) -> Tuple[int, int]:
        """
        Remove a person from an external team by email.

        Real members and pending assignments are checked independently, so an
        invitation that was never accepted is withdrawn as well.

        Returns:
            (successful external operations, failed external operations)
        """
        if self.workshop is None:
            return 0, 0
        syncs = failures = 0
        wanted = email.lower()

        try:
            users = await self._call(self.workshop.list_team_users(external_team_id))
            for user in users:
                if user.email.lower() == wanted:
                    await self._call(self.workshop.remove_team_user(external_team_id, user.id))
                    syncs += 1
        except Exception as e:
            failures += 1
            logger.warning(f"Failed to remove {email} from workshop team {external_team_id}: {e}")

        try:
            pending = await self._call(self.workshop.list_pending_assignments(external_team_id))
            if any(p.email.lower() == wanted for p in pending):
                await self._call(self.workshop.remove_pending_assignment(email, external_team_id))
                syncs += 1
        except Exception as e:
            failures += 1
            logger.warning(
                f"Failed to remove pending assignment {email} from workshop team {external_team_id}: {e}"
            )
        return syncs, failures

    # =========================================================================
    # Progress helpers
    # =========================================================================

    @staticmethod
    def _delta(before: SyncResult, after: SyncResult) -> Dict[str, Any]:
        delta: Dict[str, Any] = {
            name: getattr(after, name) - getattr(before, name) for name in COUNTERS
        }
        delta["unassigned"] = [
            u.model_dump() for u in after.unassigned[len(before.unassigned):]
        ]
        return delta

    @staticmethod
    def _merge(result: SyncResult, stored: Dict[str, Any]) -> None:
        for name in COUNTERS:
            setattr(result, name, getattr(result, name) + int(stored.get(name, 0)))
        result.unassigned.extend(UnassignedAttendee(**u) for u in stored.get("unassigned", []))
