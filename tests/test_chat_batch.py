"""
Tests for the chat batch runner.

Operations are applied one at a time, the way the chat queue worker does.
"""

import pytest

from teamforge.adapters import ChatOperation
from teamforge.errors import AdapterError, ValidationError


@pytest.fixture
def chat(adapters):
    return adapters.chat


@pytest.fixture
def runner(services):
    return services.chat_runner


async def apply_all(runner, team_id, ops):
    return [await runner.apply(team_id, ChatOperation(op=op, params=params)) for op, params in ops]


class TestCreateOperations:

    async def test_role_and_channel_refs_stored(self, runner, chat, make_team, team_store):
        team = make_team("alpha")

        await apply_all(runner, team.id, [
            ("create_role", {"name": "alpha"}),
            ("create_channel", {"name": "alpha", "category": "Teams"}),
            ("set_channel_permissions", {}),
        ])

        role = team_store.get_ref(team.id, "chat.role")
        channel = team_store.get_ref(team.id, "chat.channel")
        assert role.external_id in chat.roles
        assert channel.external_id in chat.channels
        assert (channel.external_id, role.external_id) in chat.permissions

    async def test_permissions_need_role(self, runner, make_team):
        team = make_team("alpha")
        with pytest.raises(AdapterError, match="chat.role not created"):
            await runner.apply(team.id, ChatOperation(op="set_channel_permissions"))

    async def test_unknown_operation(self, runner, make_team):
        team = make_team("alpha")
        with pytest.raises(ValidationError):
            await runner.apply(team.id, ChatOperation(op="archive_channel"))

    async def test_existing_refs_reused(self, runner, chat, make_team, team_store):
        """A resubmitted batch keeps the role and channel made by an earlier one."""
        team = make_team("alpha")
        first_role, first_channel = await apply_all(runner, team.id, [
            ("create_role", {"name": "alpha"}),
            ("create_channel", {"name": "alpha"}),
        ])

        role, channel = await apply_all(runner, team.id, [
            ("create_role", {"name": "alpha"}),
            ("create_channel", {"name": "alpha"}),
        ])

        assert role == {"role_id": first_role["role_id"], "existing": True}
        assert channel == {"channel_id": first_channel["channel_id"], "existing": True}
        assert chat.count("create_role") == 1
        assert chat.count("create_channel") == 1
        assert team_store.get_ref(team.id, "chat.role").external_id == first_role["role_id"]


class TestMembershipOperations:

    async def test_assign_then_remove(self, runner, chat, make_team, team_store):
        team = make_team("alpha")
        await apply_all(runner, team.id, [
            ("create_role", {"name": "alpha"}),
            ("assign_role", {"user_ids": ["u1", "u2"]}),
            ("assign_role", {"user_ids": ["u2", "u3"]}),
            ("remove_role", {"user_ids": ["u1"]}),
        ])

        role = team_store.get_ref(team.id, "chat.role")
        assert role.member_ids == ["u2", "u3"]
        assert chat.role_members[role.external_id] == {"u2", "u3"}


class TestDeleteOperations:

    async def test_delete_clears_refs(self, runner, chat, make_team, team_store):
        team = make_team("alpha")
        role, channel = await apply_all(runner, team.id, [
            ("create_role", {"name": "alpha"}),
            ("create_channel", {"name": "alpha"}),
        ])

        await apply_all(runner, team.id, [
            ("delete_channel", {"channel_id": channel["channel_id"]}),
            ("delete_role", {"role_id": role["role_id"]}),
        ])

        assert team_store.list_refs(team.id) == {}
        assert chat.roles == {} and chat.channels == {}
