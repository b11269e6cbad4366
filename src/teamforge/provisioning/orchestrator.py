"""
Provisioning Orchestrator.

Turns a team lifecycle intent (create / update / delete) into ordered calls
against the external system adapters and aggregates the outcome:

    directory (mandatory) -> wiki -> groupware (group mandatory) -> vcs -> chat

Every integration runs inside _run_step, which records success, duration and
payload, never raises, and bounds each adapter call with a timeout. A ref is
persisted as soon as a step yields an external identifier, so a re-run reuses
it instead of creating a duplicate.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..adapters.base import AdapterSet, bounded_call
from ..adapters.models import ChatOperation
from ..config import Settings
from ..errors import AdapterError, NotFoundError
from ..storage.models import TaskStatus, TeamInfo
from ..storage.team_store import TeamStore
from ..tasks.models import Subtask
from ..tasks.task_store import TaskStore
from .classification import TeamClassification, TeamClassifier
from .intents import CreateTeam, DeleteTeam, TeamIntent, UpdateTeam
from .models import CREATION_ORDER, Integration, IntegrationResult, ProvisioningResult

logger = logging.getLogger(__name__)

# A step appends non-fatal notes to the list and returns its payload.
Step = Callable[[List[str]], Awaitable[Dict[str, Any]]]

GROUPWARE_RESOURCES = ("folder", "calendar", "board")


def error_message(exc: BaseException) -> str:
    """Message of an exception without the integration prefix."""
    if isinstance(exc, AdapterError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class ProvisioningOrchestrator:
    """
    Executes team lifecycle intents against external systems.

    No retries happen here: a failed integration is reported in the result and
    whole-job retries belong to the queue.

    Usage:
        orchestrator = ProvisioningOrchestrator(settings, adapters, team_store, task_store)
        result = await orchestrator.provision(CreateTeam(team_id=team.id), task_id=task.id)
    """

    def __init__(
        self,
        settings: Settings,
        adapters: AdapterSet,
        team_store: TeamStore,
        task_store: Optional[TaskStore] = None,
    ):
        self.settings = settings
        self.adapters = adapters
        self.team_store = team_store
        self.task_store = task_store
        self.classifier = TeamClassifier(settings)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def provision(self, intent: TeamIntent, task_id: Optional[str] = None) -> ProvisioningResult:
        """
        Run an intent.

        Args:
            intent: CreateTeam, UpdateTeam or DeleteTeam
            task_id: Task whose subtasks record per-integration progress

        Returns:
            Aggregated ProvisioningResult (success is False iff a mandatory
            integration failed)

        Raises:
            NotFoundError: Unknown team (create/update) or task
        """
        match intent:
            case CreateTeam():
                steps, notes = self._plan_create(intent)
            case UpdateTeam():
                steps, notes = self._plan_update(intent)
            case DeleteTeam():
                steps, notes = self._plan_delete(intent)
            case _:
                raise TypeError(f"Unsupported intent: {type(intent).__name__}")

        logger.info(f"Provisioning {intent.action} for team {intent.team_id} (task={task_id})")
        result = ProvisioningResult(team_id=intent.team_id, action=intent.action, warnings=notes)
        progress = self._load_progress(task_id)

        for integration, step in steps:
            mandatory = integration.mandatory
            previous = progress.get(integration.value)
            if previous is not None and previous.is_terminal:
                outcome = self._reuse(previous, integration, mandatory)
                logger.info(f"Reusing {integration.value} outcome from a previous attempt")
            elif step is None:
                outcome = IntegrationResult(
                    integration=integration,
                    success=True,
                    skipped=True,
                    mandatory=mandatory,
                    message="disabled",
                )
                self._record(task_id, previous, outcome)
            else:
                if task_id and previous is not None:
                    self.task_store.mark_subtask_running(task_id, previous.index)
                outcome = await self._run_step(integration, step, mandatory)
                self._record(task_id, previous, outcome)
            self._aggregate(result, outcome)

        logger.info(
            f"Provisioning {intent.action} for team {intent.team_id} finished: "
            f"success={result.success} errors={len(result.errors)} warnings={len(result.warnings)}"
        )
        return result

    # =========================================================================
    # Plans
    # =========================================================================

    def _plan_create(self, intent: CreateTeam) -> Tuple[List[Tuple[Integration, Optional[Step]]], List[str]]:
        team = self.team_store.require_team(intent.team_id)
        classification = self.classifier.classify(team.kind, team.subtype)
        member_ids = [m.user_id for m in self.team_store.list_members(team.id)]
        options = intent.options

        steps: Dict[Integration, Optional[Step]] = {
            Integration.DIRECTORY: lambda notes: self._create_directory(team, classification, member_ids, notes),
            Integration.WIKI: (
                (lambda notes: self._create_wiki(team, classification))
                if options.wiki else None
            ),
            Integration.GROUPWARE: lambda notes: self._create_groupware(
                team, classification, member_ids, options.model_dump(), notes
            ),
            Integration.VCS: (
                (lambda notes: self._create_vcs(team, member_ids))
                if options.vcs else None
            ),
            Integration.CHAT: (
                (lambda notes: self._create_chat(team, classification, member_ids))
                if options.chat else None
            ),
        }
        return [(i, steps[i]) for i in CREATION_ORDER], list(classification.warnings)

    def _plan_update(self, intent: UpdateTeam) -> Tuple[List[Tuple[Integration, Optional[Step]]], List[str]]:
        notes = self._apply_local_changes(intent)
        member_ids = [m.user_id for m in self.team_store.list_members(intent.team_id)]
        team_id = intent.team_id

        steps: Dict[Integration, Step] = {
            Integration.DIRECTORY: lambda n: self._sync_members(
                team_id, "directory", member_ids,
                self.adapters.directory.add_users, self.adapters.directory.remove_users,
            ),
            Integration.WIKI: lambda n: self._touch_wiki(team_id),
            Integration.GROUPWARE: lambda n: self._sync_members(
                team_id, "groupware", member_ids,
                self.adapters.groupware.add_users_to_group,
                self.adapters.groupware.remove_users_from_group,
            ),
            Integration.VCS: lambda n: self._sync_members(
                team_id, "vcs", member_ids,
                self.adapters.vcs.add_users_to_team, self.adapters.vcs.remove_users_from_team,
            ),
            Integration.CHAT: lambda n: self._sync_chat_members(team_id, member_ids),
        }
        return [(i, steps[i]) for i in CREATION_ORDER], notes

    def _plan_delete(self, intent: DeleteTeam) -> Tuple[List[Tuple[Integration, Optional[Step]]], List[str]]:
        team_id = intent.team_id
        steps: Dict[Integration, Step] = {
            Integration.CHAT: lambda n: self._delete_chat(team_id),
            Integration.VCS: lambda n: self._delete_vcs(team_id),
            Integration.GROUPWARE: lambda n: self._delete_groupware(team_id),
            Integration.WIKI: lambda n: self._delete_simple(
                team_id, "wiki", Integration.WIKI, self.adapters.wiki.delete_page
            ),
            Integration.DIRECTORY: lambda n: self._delete_simple(
                team_id, "directory", Integration.DIRECTORY, self.adapters.directory.delete_group
            ),
        }
        return [(i, steps[i]) for i in reversed(CREATION_ORDER)], []

    # =========================================================================
    # Step wrapper
    # =========================================================================

    async def _run_step(self, integration: Integration, step: Step, mandatory: bool) -> IntegrationResult:
        """Run one integration step. Never raises."""
        notes: List[str] = []
        start = time.monotonic()
        try:
            data = await step(notes)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            message = error_message(e)
            log = logger.error if mandatory else logger.warning
            log(f"{integration.value} failed after {duration_ms:.0f}ms: {message}")
            return IntegrationResult(
                integration=integration,
                success=False,
                mandatory=mandatory,
                message=f"{integration.value} failed",
                error=message,
                warnings=notes,
                duration_ms=duration_ms,
            )

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(f"{integration.value} succeeded in {duration_ms:.0f}ms")
        skipped = bool(data.pop("skipped", False))
        return IntegrationResult(
            integration=integration,
            success=True,
            skipped=skipped,
            mandatory=mandatory,
            message=data.pop("message", f"{integration.value} ok"),
            data=data,
            warnings=notes,
            duration_ms=duration_ms,
        )

    async def _call(self, integration: str, awaitable: Awaitable[Any]) -> Any:
        """Await one adapter call, bounded by the configured timeout."""
        return await bounded_call(integration, awaitable, self.settings.adapter_call_timeout_seconds)

    @staticmethod
    def _aggregate(result: ProvisioningResult, outcome: IntegrationResult) -> None:
        result.results.append(outcome)
        name = outcome.integration.value
        result.warnings.extend(f"{name}: {w}" for w in outcome.warnings)
        if outcome.success:
            return
        entry = f"{name}: {outcome.error}"
        if outcome.mandatory:
            result.errors.append(entry)
            result.success = False
        else:
            result.warnings.append(entry)

    # =========================================================================
    # Subtask progress
    # =========================================================================

    def _load_progress(self, task_id: Optional[str]) -> Dict[str, Subtask]:
        if not task_id or self.task_store is None:
            return {}
        task = self.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return {sub.name: sub for sub in task.subtasks}

    def _record(self, task_id: Optional[str], subtask: Optional[Subtask], outcome: IntegrationResult) -> None:
        if not task_id or subtask is None:
            return
        if outcome.success:
            self.task_store.mark_subtask_completed(
                task_id, subtask.index, outcome.model_dump(mode="json")
            )
        else:
            self.task_store.mark_subtask_failed(task_id, subtask.index, outcome.error or "failed")

    @staticmethod
    def _reuse(subtask: Subtask, integration: Integration, mandatory: bool) -> IntegrationResult:
        if subtask.status == TaskStatus.COMPLETED and subtask.result:
            reused = IntegrationResult.model_validate(subtask.result)
            return reused.model_copy(update={"mandatory": mandatory})
        return IntegrationResult(
            integration=integration,
            success=subtask.status == TaskStatus.COMPLETED,
            mandatory=mandatory,
            error=subtask.error,
        )

    # =========================================================================
    # Create steps
    # =========================================================================

    async def _create_directory(self, team: TeamInfo, cls: TeamClassification,
                                member_ids: List[str], notes: List[str]) -> Dict[str, Any]:
        directory = self.adapters.directory
        ref = self.team_store.get_ref(team.id, "directory")
        created = False
        if ref is None:
            parent = await self._call("directory", directory.get_parent_group(cls.parent_group_name))
            if parent is None:
                raise AdapterError("directory", f"Parent group '{cls.parent_group_name}' not found")
            group = await self._call(
                "directory",
                directory.create_group(
                    self.classifier.group_name(cls.kind, team.name), team.description, parent.id
                ),
            )
            ref = self.team_store.upsert_ref(
                team.id, "directory", group.id,
                data={"name": group.name, "parent_id": parent.id}, member_ids=[],
            )
            created = True

        if member_ids:
            await self._call("directory", directory.add_users(ref.external_id, member_ids))
        self.team_store.set_ref_members(team.id, "directory", member_ids)
        return {
            "group_id": ref.external_id,
            "name": ref.data.get("name"),
            "created": created,
            "members": len(member_ids),
        }

    async def _create_wiki(self, team: TeamInfo, cls: TeamClassification) -> Dict[str, Any]:
        ref = self.team_store.get_ref(team.id, "wiki")
        if ref is not None:
            return {"page_path": ref.external_id, "created": False}
        page = await self._call("wiki", self.adapters.wiki.create_team_index_page(cls.kind, team.name))
        self.team_store.upsert_ref(team.id, "wiki", page.path, data=page.model_dump())
        return {"page_path": page.path, "page_id": page.id, "created": True}

    async def _create_groupware(self, team: TeamInfo, cls: TeamClassification, member_ids: List[str],
                                options: Dict[str, bool], notes: List[str]) -> Dict[str, Any]:
        groupware = self.adapters.groupware
        ref = self.team_store.get_ref(team.id, "groupware")
        created = False
        if ref is None:
            group = await self._call(
                "groupware", groupware.create_group(self.classifier.group_name(cls.kind, team.name))
            )
            ref = self.team_store.upsert_ref(
                team.id, "groupware", group.id, data={"name": group.name}, member_ids=[]
            )
            created = True

        if member_ids:
            await self._call("groupware", groupware.add_users_to_group(ref.external_id, member_ids))
        self.team_store.set_ref_members(team.id, "groupware", member_ids)

        data: Dict[str, Any] = {"group_id": ref.external_id, "created": created}
        for resource in GROUPWARE_RESOURCES:
            if not options.get(f"groupware_{resource}"):
                continue
            try:
                data[resource] = await self._create_groupware_resource(team, cls, ref.external_id, resource)
            except Exception as e:
                message = error_message(e)
                logger.warning(f"groupware {resource} failed for team {team.id}: {message}")
                notes.append(f"{resource}: {message}")
                data[resource] = {"error": message}
        return data

    async def _create_groupware_resource(self, team: TeamInfo, cls: TeamClassification,
                                         group_id: str, resource: str) -> Dict[str, Any]:
        groupware = self.adapters.groupware
        system = f"groupware.{resource}"
        ref = self.team_store.get_ref(team.id, system)
        if ref is None:
            if resource == "folder":
                created = await self._call(
                    "groupware", groupware.create_folder(self.classifier.folder_name(cls.kind, team.name), group_id)
                )
            elif resource == "calendar":
                created = await self._call("groupware", groupware.create_calendar(team.name, group_id))
            else:
                created = await self._call("groupware", groupware.create_board(team.name, group_id))
            ref = self.team_store.upsert_ref(team.id, system, created.id, data={"name": created.name})

        if resource == "calendar":
            await self._call(
                "groupware",
                groupware.grant_group_calendar_access(
                    ref.data.get("name", team.name), group_id, self.settings.calendar_access_level
                ),
            )
        return {"id": ref.external_id, "name": ref.data.get("name")}

    async def _create_vcs(self, team: TeamInfo, member_ids: List[str]) -> Dict[str, Any]:
        vcs = self.adapters.vcs
        team_ref = self.team_store.get_ref(team.id, "vcs")
        if team_ref is None:
            vcs_team = await self._call("vcs", vcs.create_team(team.name, team.description))
            team_ref = self.team_store.upsert_ref(
                team.id, "vcs", vcs_team.id, data={"name": vcs_team.name}, member_ids=[]
            )

        repo_ref = self.team_store.get_ref(team.id, "vcs.repository")
        if repo_ref is None:
            repo = await self._call("vcs", vcs.create_repository(team.name, team.description))
            repo_ref = self.team_store.upsert_ref(
                team.id, "vcs.repository", repo.id, data={"name": repo.name}
            )

        await self._call("vcs", vcs.add_team_to_repository(team_ref.external_id, repo_ref.external_id))
        if member_ids:
            await self._call("vcs", vcs.add_users_to_team(team_ref.external_id, member_ids))
        self.team_store.set_ref_members(team.id, "vcs", member_ids)
        return {"team_id": team_ref.external_id, "repository_id": repo_ref.external_id}

    async def _create_chat(self, team: TeamInfo, cls: TeamClassification,
                           member_ids: List[str]) -> Dict[str, Any]:
        role_ref = self.team_store.get_ref(team.id, "chat.role")
        channel_ref = self.team_store.get_ref(team.id, "chat.channel")
        if role_ref is not None and channel_ref is not None:
            return {
                "existing": True,
                "role_id": role_ref.external_id,
                "channel_id": channel_ref.external_id,
            }

        operations = [
            ChatOperation(op="create_role", params={"name": self.classifier.group_name(cls.kind, team.name)}),
            ChatOperation(
                op="create_channel",
                params={"name": team.name, "category": self.settings.chat_channel_category or cls.kind},
            ),
            ChatOperation(op="set_channel_permissions"),
            ChatOperation(op="assign_role", params={"user_ids": member_ids}),
        ]
        job = await self._call("chat", self.adapters.chat_dispatcher.submit(team.id, operations))
        return {"job_id": job.job_id, "operations": job.operations}

    # =========================================================================
    # Update steps
    # =========================================================================

    def _apply_local_changes(self, intent: UpdateTeam) -> List[str]:
        """Apply field and membership changes to the local team row."""
        team = self.team_store.require_team(intent.team_id)
        changes = intent.changes
        notes: List[str] = []

        renamed = [
            field_name
            for field_name in ("name", "kind", "subtype")
            if getattr(changes, field_name) is not None
            and getattr(changes, field_name) != getattr(team, field_name)
        ]
        if renamed or (changes.description is not None and changes.description != team.description):
            self.team_store.update_team(
                team.id,
                name=changes.name,
                kind=changes.kind,
                subtype=changes.subtype,
                description=changes.description,
            )
        if renamed:
            notes.append(
                f"Team {'/'.join(renamed)} change detected - manual follow-up required in external systems"
            )

        for user_id in changes.add_user_ids:
            self.team_store.add_member(team.id, user_id)
        for user_id in changes.remove_user_ids:
            self.team_store.remove_member(team.id, user_id)
        return notes

    async def _sync_members(
        self,
        team_id: str,
        system: str,
        member_ids: List[str],
        add: Callable[[str, List[str]], Awaitable[None]],
        remove: Callable[[str, List[str]], Awaitable[None]],
    ) -> Dict[str, Any]:
        """Push only the difference between current and recorded members."""
        ref = self.team_store.get_ref(team_id, system)
        if ref is None:
            return {"skipped": True, "message": "not provisioned"}

        recorded = set(ref.member_ids)
        current = set(member_ids)
        to_add = [u for u in member_ids if u not in recorded]
        to_remove = [u for u in ref.member_ids if u not in current]

        if to_add:
            await self._call(system, add(ref.external_id, to_add))
        if to_remove:
            await self._call(system, remove(ref.external_id, to_remove))
        if to_add or to_remove:
            self.team_store.set_ref_members(team_id, system, member_ids)
        return {"external_id": ref.external_id, "added": to_add, "removed": to_remove}

    async def _touch_wiki(self, team_id: str) -> Dict[str, Any]:
        ref = self.team_store.get_ref(team_id, "wiki")
        if ref is None:
            return {"skipped": True, "message": "not provisioned"}
        return {"page_path": ref.external_id, "message": "no membership on wiki"}

    async def _sync_chat_members(self, team_id: str, member_ids: List[str]) -> Dict[str, Any]:
        ref = self.team_store.get_ref(team_id, "chat.role")
        if ref is None:
            return {"skipped": True, "message": "not provisioned"}

        recorded = set(ref.member_ids)
        current = set(member_ids)
        to_add = [u for u in member_ids if u not in recorded]
        to_remove = [u for u in ref.member_ids if u not in current]
        operations = []
        if to_add:
            operations.append(ChatOperation(op="assign_role", params={"user_ids": to_add}))
        if to_remove:
            operations.append(ChatOperation(op="remove_role", params={"user_ids": to_remove}))
        if not operations:
            return {"added": [], "removed": []}

        job = await self._call("chat", self.adapters.chat_dispatcher.submit(team_id, operations))
        return {"job_id": job.job_id, "added": to_add, "removed": to_remove}

    # =========================================================================
    # Delete steps
    # =========================================================================

    async def _delete_simple(self, team_id: str, system: str, integration: Integration,
                             delete: Callable[[str], Awaitable[None]]) -> Dict[str, Any]:
        ref = self.team_store.get_ref(team_id, system)
        if ref is None:
            return {"message": "nothing to delete"}
        await self._call(integration.value, delete(ref.external_id))
        self.team_store.delete_ref(team_id, system)
        return {"deleted": [ref.external_id]}

    async def _delete_groupware(self, team_id: str) -> Dict[str, Any]:
        groupware = self.adapters.groupware
        deleted: List[str] = []
        for resource in GROUPWARE_RESOURCES:
            system = f"groupware.{resource}"
            ref = self.team_store.get_ref(team_id, system)
            if ref is None:
                continue
            await self._call("groupware", groupware.delete_resource(resource, ref.external_id))
            self.team_store.delete_ref(team_id, system)
            deleted.append(ref.external_id)

        group = await self._delete_simple(team_id, "groupware", Integration.GROUPWARE, groupware.delete_group)
        deleted.extend(group.get("deleted", []))
        if not deleted:
            return {"message": "nothing to delete"}
        return {"deleted": deleted}

    async def _delete_vcs(self, team_id: str) -> Dict[str, Any]:
        vcs = self.adapters.vcs
        deleted: List[str] = []
        repo_ref = self.team_store.get_ref(team_id, "vcs.repository")
        if repo_ref is not None:
            await self._call("vcs", vcs.delete_repository(repo_ref.external_id))
            self.team_store.delete_ref(team_id, "vcs.repository")
            deleted.append(repo_ref.external_id)
        team = await self._delete_simple(team_id, "vcs", Integration.VCS, vcs.delete_team)
        deleted.extend(team.get("deleted", []))
        if not deleted:
            return {"message": "nothing to delete"}
        return {"deleted": deleted}

    async def _delete_chat(self, team_id: str) -> Dict[str, Any]:
        """Queue removal of the chat channel then role; the batch drops the refs."""
        channel_ref = self.team_store.get_ref(team_id, "chat.channel")
        role_ref = self.team_store.get_ref(team_id, "chat.role")
        operations = []
        if channel_ref is not None:
            operations.append(
                ChatOperation(op="delete_channel", params={"channel_id": channel_ref.external_id})
            )
        if role_ref is not None:
            operations.append(ChatOperation(op="delete_role", params={"role_id": role_ref.external_id}))
        if not operations:
            return {"message": "nothing to delete"}
        job = await self._call("chat", self.adapters.chat_dispatcher.submit(team_id, operations))
        return {"job_id": job.job_id, "operations": job.operations}
