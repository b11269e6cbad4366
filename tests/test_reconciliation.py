"""
Tests for the Membership Reconciliation Engine.

Scenarios: auto-create and first-fit assignment, capacity limits, declined
removal reaching real members and pending assignments, workshop mirroring,
pass failure isolation, sub-team switching and per-pass task progress.
"""

import pytest

from teamforge.adapters import InMemoryWorkshop, PendingAssignment
from teamforge.errors import InvalidStateError, NotFoundError
from teamforge.provisioning.intents import SYNC_PASSES
from teamforge.reconciliation import ReconciliationEngine, SyncMode
from teamforge.storage import RSVPStatus, TaskStatus


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def workshop(adapters) -> InMemoryWorkshop:
    return adapters.workshop


@pytest.fixture
def attend(team_store, event_store):
    """RSVP a person (created on first use) and return their user id."""

    def _attend(event_id, email, status=RSVPStatus.CONFIRMED):
        user_id = team_store.create_user(email)
        event_store.set_rsvp(event_id, user_id, status)
        return user_id

    return _attend


def roster(event_store, event_id):
    """{team_number: [emails]} for an event."""
    return {
        t.team_number: [m.email for m in t.members]
        for t in event_store.list_event_teams(event_id)
    }


# =============================================================================
# Auto-assign
# =============================================================================

class TestAutoAssign:
    """Tests for first-fit assignment of confirmed attendees."""

    async def test_auto_create_scenario(self, engine, event_store, attend):
        """A and B fill team 1; C confirming later gets a new team 2."""
        event = event_store.create_event("Hack night", members_per_team=2, auto_create_teams=True)
        attend(event.id, "a@x.io")
        attend(event.id, "b@x.io")

        first = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert first.teams_created == 1
        assert first.users_assigned == 2
        assert roster(event_store, event.id) == {1: ["a@x.io", "b@x.io"]}

        attend(event.id, "c@x.io")
        second = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert second.teams_created == 1
        assert second.users_assigned == 1
        assert roster(event_store, event.id) == {1: ["a@x.io", "b@x.io"], 2: ["c@x.io"]}

    async def test_capacity_never_exceeded(self, engine, event_store, attend):
        """Without auto-create, overflow attendees are reported unassigned."""
        event = event_store.create_event("Workshop", members_per_team=2)
        event_store.create_event_team(event.id)
        for email in ("a@x.io", "b@x.io", "c@x.io"):
            attend(event.id, email)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.users_assigned == 2
        assert [(u.email, u.reason) for u in result.unassigned] == [("c@x.io", "no_capacity")]
        assert all(len(t.members) <= 2 for t in event_store.list_event_teams(event.id))

    async def test_full_teams_never_grow_a_third(self, engine, event_store, team_store, attend):
        """Auto-create only ensures enough teams for the confirmed count."""
        event = event_store.create_event("Workshop", members_per_team=4, auto_create_teams=True)
        one = event_store.create_event_team(event.id)
        two = event_store.create_event_team(event.id)
        for email in ("a@x.io", "b@x.io", "c@x.io"):
            event_store.add_event_team_member(one.id, attend(event.id, email), email)
        for email in ("w@x.io", "x@x.io", "y@x.io", "z@x.io"):
            event_store.add_event_team_member(two.id, team_store.create_user(email), email)
        attend(event.id, "d@x.io")
        attend(event.id, "e@x.io")

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.teams_created == 0
        assert result.users_assigned == 1
        assert [u.email for u in result.unassigned] == ["e@x.io"]
        assert len(event_store.list_event_teams(event.id)) == 2

    async def test_five_confirmed_three_placed(self, engine, event_store, attend):
        """Three of five confirmed already sit in team 1; the other two fill in without a third team."""
        event = event_store.create_event("Workshop", members_per_team=4, auto_create_teams=True)
        one = event_store.create_event_team(event.id)
        event_store.create_event_team(event.id)
        for email in ("a@x.io", "b@x.io", "c@x.io"):
            event_store.add_event_team_member(one.id, attend(event.id, email), email)
        attend(event.id, "d@x.io")
        attend(event.id, "e@x.io")

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.teams_created == 0
        assert result.users_assigned == 2
        assert result.unassigned == []
        teams = roster(event_store, event.id)
        assert sorted(teams) == [1, 2]
        assert len(teams[1]) == 4
        assert len(teams[2]) == 1

    async def test_two_open_seats_place_exactly_two(self, engine, event_store, team_store, attend):
        """Only the open seats are filled; everyone else is reported no_capacity."""
        event = event_store.create_event("Workshop", members_per_team=4)
        one = event_store.create_event_team(event.id)
        two = event_store.create_event_team(event.id)
        for team, emails in ((one, ("s1@x.io", "s2@x.io", "s3@x.io")), (two, ("s4@x.io", "s5@x.io", "s6@x.io"))):
            for email in emails:
                event_store.add_event_team_member(team.id, team_store.create_user(email), email)
        for email in ("a@x.io", "b@x.io", "c@x.io", "d@x.io", "e@x.io"):
            attend(event.id, email)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.users_assigned == 2
        assert len(result.unassigned) == 3
        assert {u.reason for u in result.unassigned} == {"no_capacity"}
        assert [len(t.members) for t in event_store.list_event_teams(event.id)] == [4, 4]

    async def test_first_fit_prefers_earlier_team(self, engine, event_store, team_store, attend):
        """An earlier team with room wins over a later, emptier one."""
        event = event_store.create_event("Workshop", members_per_team=4)
        one = event_store.create_event_team(event.id)
        event_store.create_event_team(event.id)
        for email in ("s1@x.io", "s2@x.io"):
            event_store.add_event_team_member(one.id, team_store.create_user(email), email)
        attend(event.id, "new@x.io")

        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert roster(event_store, event.id) == {1: ["s1@x.io", "s2@x.io", "new@x.io"], 2: []}

    async def test_auto_created_teams_not_counted_as_updated(self, engine, event_store, attend):
        event = event_store.create_event("Workshop", auto_create_teams=True)
        attend(event.id, "a@x.io")

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.teams_created == 1
        assert result.teams_updated == 0

    async def test_only_confirmed_attendees_assigned(self, engine, event_store, attend):
        event = event_store.create_event("Workshop", auto_create_teams=True)
        attend(event.id, "a@x.io")
        attend(event.id, "b@x.io", RSVPStatus.PENDING)
        attend(event.id, "c@x.io", RSVPStatus.DECLINED)

        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert roster(event_store, event.id) == {1: ["a@x.io"]}

    async def test_sync_is_repeatable(self, engine, event_store, attend):
        event = event_store.create_event("Workshop", members_per_team=3, auto_create_teams=True)
        attend(event.id, "a@x.io")
        await engine.sync(event.id, SyncMode.SYNC_ALL)

        again = await engine.sync(event.id, SyncMode.SYNC_ALL)

        assert again.users_assigned == 0
        assert again.teams_created == 0
        assert roster(event_store, event.id) == {1: ["a@x.io"]}

    async def test_capacity_precedence(self, engine, event_store, settings):
        event = event_store.create_event("Workshop", members_per_team=6)
        plain = event_store.create_event("Plain")

        assert engine.capacity_for(event, 3) == 3
        assert engine.capacity_for(event) == 6
        assert engine.capacity_for(plain) == settings.default_members_per_team


# =============================================================================
# Declined removal
# =============================================================================

class TestRemoveDeclined:
    """Declined attendees leave local and external teams."""

    async def test_removes_real_members_and_pending_assignments(self, engine, event_store, workshop, attend):
        event = event_store.create_event("CTF", members_per_team=4, workshop_id="ws-1")
        ws_team = workshop.add_team("ws-1", "Red", team_number=1)
        workshop.register_user("ann@x.io")
        ann = attend(event.id, "ann@x.io")
        ben = attend(event.id, "Ben@X.io")

        await engine.sync(event.id, SyncMode.SYNC_ALL)
        assert workshop.emails_in(ws_team.id) == {"ann@x.io"}
        assert workshop.pending_emails(ws_team.id) == {"ben@x.io"}

        event_store.set_rsvp(event.id, ann, RSVPStatus.DECLINED)
        event_store.set_rsvp(event.id, ben, RSVPStatus.DECLINED)
        result = await engine.sync(event.id, SyncMode.REMOVE_DECLINED)

        assert result.users_removed == 2
        assert result.external_failures == 0
        assert roster(event_store, event.id) == {1: []}
        assert workshop.emails_in(ws_team.id) == set()
        assert workshop.pending_emails(ws_team.id) == set()

    async def test_email_match_is_case_insensitive(self, engine, event_store, workshop, attend):
        event = event_store.create_event("CTF", workshop_id="ws-1")
        ws_team = workshop.add_team("ws-1", "Blue", team_number=1)
        workshop.register_user("ANN@x.io")
        ann = attend(event.id, "ann@x.io")
        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        event_store.set_rsvp(event.id, ann, RSVPStatus.DECLINED)
        await engine.sync(event.id, SyncMode.REMOVE_DECLINED)

        assert workshop.emails_in(ws_team.id) == set()

    async def test_same_email_member_and_pending(self, engine, event_store, workshop, attend):
        """A stale invitation for an existing member is withdrawn along with the membership."""
        event = event_store.create_event("CTF", workshop_id="ws-1")
        ws_team = workshop.add_team("ws-1", "Red", team_number=1)
        workshop.register_user("ann@x.io")
        ann = attend(event.id, "ann@x.io")
        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)
        workshop.pending[ws_team.id].append(PendingAssignment(id="stale-1", email="Ann@x.io"))
        assert workshop.emails_in(ws_team.id) == {"ann@x.io"}
        assert workshop.pending_emails(ws_team.id) == {"ann@x.io"}

        event_store.set_rsvp(event.id, ann, RSVPStatus.DECLINED)
        result = await engine.sync(event.id, SyncMode.REMOVE_DECLINED)

        assert result.users_removed == 1
        assert result.external_failures == 0
        assert workshop.emails_in(ws_team.id) == set()
        assert workshop.pending_emails(ws_team.id) == set()
        assert workshop.count("remove_team_user") == 1
        assert workshop.count("remove_pending_assignment") == 1

    async def test_auto_assign_mode_keeps_declined(self, engine, event_store, attend):
        event = event_store.create_event("Workshop", auto_create_teams=True)
        ann = attend(event.id, "ann@x.io")
        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)
        event_store.set_rsvp(event.id, ann, RSVPStatus.DECLINED)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.users_removed == 0
        assert roster(event_store, event.id) == {1: ["ann@x.io"]}


# =============================================================================
# Workshop mirroring
# =============================================================================

class TestWorkshopMirror:
    """External workshop teams are mirrored locally."""

    async def test_mirror_creates_and_links(self, engine, event_store, workshop):
        event = event_store.create_event("CTF", workshop_id="ws-1")
        local = event_store.create_event_team(event.id)
        linked = workshop.add_team("ws-1", "Team One", team_number=1)
        extra = workshop.add_team("ws-1", "Team Two", team_number=2)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        teams = {t.team_number: t for t in event_store.list_event_teams(event.id)}
        assert teams[1].id == local.id
        assert teams[1].external_team_id == linked.id
        assert teams[2].external_team_id == extra.id
        assert teams[2].name == "Team Two"
        assert result.teams_updated == 2

        again = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)
        assert again.teams_updated == 0

    async def test_mirror_matches_by_number_not_id(self, engine, event_store, workshop):
        """A linked external team that now reports another number is mirrored under that number."""
        event = event_store.create_event("CTF", workshop_id="ws-1")
        ext = workshop.add_team("ws-1", "Renumbered", team_number=2)
        event_store.create_event_team(event.id, external_team_id=ext.id)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        teams = {t.team_number: t for t in event_store.list_event_teams(event.id)}
        assert sorted(teams) == [1, 2]
        assert teams[2].external_team_id == ext.id
        assert result.teams_updated == 1

    async def test_mirror_relinks_reassigned_id(self, engine, event_store, workshop):
        """A team number seen with a new external id is relinked, not duplicated."""
        event = event_store.create_event("CTF", workshop_id="ws-1")
        local = event_store.create_event_team(event.id, external_team_id="ws-team-old")
        ext = workshop.add_team("ws-1", "Team One", team_number=1)

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        teams = event_store.list_event_teams(event.id)
        assert [(t.id, t.external_team_id) for t in teams] == [(local.id, ext.id)]
        assert result.teams_updated == 1

    async def test_numberless_team_matched_by_id(self, engine, event_store, workshop):
        event = event_store.create_event("CTF", workshop_id="ws-1")
        ext = workshop.add_team("ws-1", "Floating")

        await engine.sync(event.id, SyncMode.AUTO_ASSIGN)
        again = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        linked = [t for t in event_store.list_event_teams(event.id) if t.external_team_id == ext.id]
        assert len(linked) == 1
        assert again.teams_updated == 0

    async def test_push_adds_local_members_externally(self, engine, event_store, workshop, team_store):
        event = event_store.create_event("CTF", workshop_id="ws-1")
        ws_team = workshop.add_team("ws-1", "Red", team_number=1)
        workshop.register_user("ann@x.io")
        local = event_store.create_event_team(event.id, external_team_id=ws_team.id)
        ann = team_store.create_user("ann@x.io")
        event_store.add_event_team_member(local.id, ann, "ann@x.io")

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert workshop.emails_in(ws_team.id) == {"ann@x.io"}
        assert result.external_syncs == 1

    async def test_failing_pass_does_not_stop_sync(self, services, event_store, attend):
        class DownWorkshop(InMemoryWorkshop):
            async def list_workshop_teams(self, workshop_id):
                raise RuntimeError("workshop down")

        engine = ReconciliationEngine(services.settings, event_store, DownWorkshop())
        event = event_store.create_event("CTF", workshop_id="ws-1", auto_create_teams=True)
        attend(event.id, "ann@x.io")

        result = await engine.sync(event.id, SyncMode.SYNC_ALL)

        assert result.errors == ["mirror_external_teams: workshop down"]
        assert result.users_assigned == 1

    async def test_external_member_failure_counted(self, services, event_store, attend):
        class RejectingWorkshop(InMemoryWorkshop):
            async def add_team_member_by_email(self, team_id, email):
                raise RuntimeError("rejected")

        workshop = RejectingWorkshop()
        engine = ReconciliationEngine(services.settings, event_store, workshop)
        event = event_store.create_event("CTF", workshop_id="ws-1")
        workshop.add_team("ws-1", "Red", team_number=1)
        attend(event.id, "ann@x.io")

        result = await engine.sync(event.id, SyncMode.AUTO_ASSIGN)

        assert result.users_assigned == 1
        assert result.external_failures == 1
        assert result.errors == []


# =============================================================================
# Task progress
# =============================================================================

class TestSyncProgress:
    """Each pass is recorded on its own subtask."""

    async def test_passes_recorded(self, engine, event_store, task_store, attend):
        event = event_store.create_event("Workshop", auto_create_teams=True)
        attend(event.id, "a@x.io")
        task = task_store.create_task("sync", "event", event.id, SYNC_PASSES)

        await engine.sync(event.id, SyncMode.SYNC_ALL, task_id=task.id)

        subtasks = task_store.get_task(task.id).subtasks
        assert [s.status for s in subtasks] == [TaskStatus.COMPLETED] * 3
        assert subtasks[2].result["users_assigned"] == 1
        assert subtasks[2].result["teams_created"] == 1

    async def test_finished_pass_not_repeated(self, engine, event_store, task_store, attend):
        event = event_store.create_event("Workshop", auto_create_teams=True)
        attend(event.id, "a@x.io")
        task = task_store.create_task("sync", "event", event.id, SYNC_PASSES)
        task_store.mark_subtask_completed(task.id, 2, {"users_assigned": 1, "teams_created": 1})

        result = await engine.sync(event.id, SyncMode.SYNC_ALL, task_id=task.id)

        assert result.users_assigned == 1
        assert event_store.list_event_teams(event.id) == []

    async def test_unknown_event(self, engine):
        with pytest.raises(NotFoundError):
            await engine.sync("evt_missing", SyncMode.SYNC_ALL)


# =============================================================================
# Sub-team management
# =============================================================================

class TestSwitchMember:
    """Tests for moving an attendee between sub-teams."""

    @pytest.fixture
    def event(self, event_store):
        return event_store.create_event("CTF", members_per_team=2, allow_team_switching=True)

    @pytest.fixture
    def placed(self, event, event_store, team_store):
        """Two teams; ann on team 1."""
        one = event_store.create_event_team(event.id)
        two = event_store.create_event_team(event.id)
        ann = team_store.create_user("ann@x.io")
        event_store.add_event_team_member(one.id, ann, "ann@x.io")
        return one, two, ann

    async def test_switch_moves_locally(self, engine, event, event_store, placed):
        one, two, ann = placed

        result = await engine.switch_member(event.id, ann, two.id)

        assert (result.from_team_id, result.to_team_id) == (one.id, two.id)
        assert roster(event_store, event.id) == {1: [], 2: ["ann@x.io"]}

    async def test_switch_to_same_team_rejected(self, engine, event, placed):
        one, _, ann = placed
        with pytest.raises(InvalidStateError, match="already in this team"):
            await engine.switch_member(event.id, ann, one.id)

    async def test_switch_to_full_team_rejected(self, engine, event, event_store, team_store, placed):
        _, two, ann = placed
        for email in ("b@x.io", "c@x.io"):
            event_store.add_event_team_member(two.id, team_store.create_user(email), email)
        with pytest.raises(InvalidStateError, match="full"):
            await engine.switch_member(event.id, ann, two.id)

    async def test_switch_unknown_target(self, engine, event, placed):
        _, _, ann = placed
        with pytest.raises(NotFoundError):
            await engine.switch_member(event.id, ann, 9999)

    async def test_switch_disabled(self, engine, event_store, team_store):
        event = event_store.create_event("Locked")
        team = event_store.create_event_team(event.id)
        with pytest.raises(InvalidStateError, match="not allowed"):
            await engine.switch_member(event.id, team_store.create_user("a@x.io"), team.id)

    async def test_switch_updates_workshop(self, engine, event, event_store, team_store, workshop):
        ext_one = workshop.add_team("ws-1", "One", 1)
        ext_two = workshop.add_team("ws-1", "Two", 2)
        workshop.register_user("ann@x.io")
        one = event_store.create_event_team(event.id, external_team_id=ext_one.id)
        two = event_store.create_event_team(event.id, external_team_id=ext_two.id)
        ann = team_store.create_user("ann@x.io")
        event_store.add_event_team_member(one.id, ann, "ann@x.io")
        await workshop.add_team_member_by_email(ext_one.id, "ann@x.io")

        result = await engine.switch_member(event.id, ann, two.id)

        assert result.external_syncs == 2
        assert result.warnings == []
        assert workshop.emails_in(ext_one.id) == set()
        assert workshop.emails_in(ext_two.id) == {"ann@x.io"}


class TestTeamManagement:
    """Tests for sub-team creation and teardown."""

    def test_create_numbers_sequentially(self, engine, event_store):
        event = event_store.create_event("Workshop")
        engine.create_event_team(event.id)
        second = engine.create_event_team(event.id, name="Night Owls")

        assert second.team_number == 2
        assert second.name == "Night Owls"

    def test_create_requires_teams_enabled(self, engine, event_store):
        event = event_store.create_event("Talk", teams_enabled=False)
        with pytest.raises(InvalidStateError):
            engine.create_event_team(event.id)

    def test_teardown(self, engine, event_store):
        event = event_store.create_event("Workshop")
        engine.create_event_team(event.id)
        engine.create_event_team(event.id)

        assert engine.teardown_event_teams(event.id) == 2
        assert event_store.list_event_teams(event.id) == []
