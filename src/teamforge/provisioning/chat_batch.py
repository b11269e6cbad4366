"""
Chat batch runner.

Applies one queued ChatOperation against the chat adapter and keeps the
chat.role / chat.channel refs in step. The chat queue worker calls apply()
once per operation with a pause in between, which keeps the chat service
under its rate limit.
"""

import logging
from typing import Any, Dict, List

from ..adapters.base import ChatAdapter, bounded_call
from ..adapters.models import ChatOperation
from ..config import Settings
from ..errors import AdapterError, ValidationError
from ..storage.team_store import TeamStore

logger = logging.getLogger(__name__)


class ChatBatchRunner:
    """Executes chat batch operations for a team."""

    def __init__(self, settings: Settings, chat: ChatAdapter, team_store: TeamStore):
        self.settings = settings
        self.chat = chat
        self.team_store = team_store

    async def apply(self, team_id: str, operation: ChatOperation) -> Dict[str, Any]:
        """
        Apply a single operation.

        Args:
            team_id: Local team the batch belongs to
            operation: Operation to apply

        Returns:
            Payload describing what changed

        Raises:
            ValidationError: Unknown op
            AdapterError: Chat call failed or a prerequisite ref is missing
        """
        params = operation.params
        logger.info(f"Chat op {operation.op} for team {team_id}")

        match operation.op:
            case "create_role":
                existing = self.team_store.get_ref(team_id, "chat.role")
                if existing is not None:
                    return {"role_id": existing.external_id, "existing": True}
                role = await self._call(self.chat.create_role(params["name"]))
                self.team_store.upsert_ref(team_id, "chat.role", role.id, data={"name": role.name})
                return {"role_id": role.id}

            case "create_channel":
                existing = self.team_store.get_ref(team_id, "chat.channel")
                if existing is not None:
                    return {"channel_id": existing.external_id, "existing": True}
                channel = await self._call(
                    self.chat.create_channel(params["name"], params.get("category"))
                )
                self.team_store.upsert_ref(team_id, "chat.channel", channel.id, data={"name": channel.name})
                return {"channel_id": channel.id}

            case "set_channel_permissions":
                role_ref = self._require_ref(team_id, "chat.role")
                channel_ref = self._require_ref(team_id, "chat.channel")
                await self._call(
                    self.chat.set_channel_permissions(channel_ref.external_id, role_ref.external_id)
                )
                return {"channel_id": channel_ref.external_id, "role_id": role_ref.external_id}

            case "assign_role":
                role_ref = self._require_ref(team_id, "chat.role")
                user_ids: List[str] = list(params.get("user_ids", []))
                if user_ids:
                    await self._call(self.chat.assign_role_to_users(role_ref.external_id, user_ids))
                members = list(role_ref.member_ids)
                members.extend(u for u in user_ids if u not in members)
                self.team_store.set_ref_members(team_id, "chat.role", members)
                return {"assigned": user_ids}

            case "remove_role":
                role_ref = self._require_ref(team_id, "chat.role")
                user_ids = list(params.get("user_ids", []))
                if user_ids:
                    await self._call(self.chat.remove_role_from_users(role_ref.external_id, user_ids))
                members = [u for u in role_ref.member_ids if u not in user_ids]
                self.team_store.set_ref_members(team_id, "chat.role", members)
                return {"removed": user_ids}

            case "delete_channel":
                await self._call(self.chat.delete_channel(params["channel_id"]))
                self.team_store.delete_ref(team_id, "chat.channel")
                return {"deleted": params["channel_id"]}

            case "delete_role":
                await self._call(self.chat.delete_role(params["role_id"]))
                self.team_store.delete_ref(team_id, "chat.role")
                return {"deleted": params["role_id"]}

            case _:
                raise ValidationError(f"Unknown chat operation: {operation.op}")

    async def _call(self, awaitable):
        return await bounded_call("chat", awaitable, self.settings.adapter_call_timeout_seconds)

    def _require_ref(self, team_id: str, system: str):
        ref = self.team_store.get_ref(team_id, system)
        if ref is None:
            raise AdapterError("chat", f"{system} not created for team {team_id}")
        return ref
