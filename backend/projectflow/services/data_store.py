"""Session-scoped data store keeping role-scoped portal records in sync"""

import asyncio
import functools
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from projectflow.config import settings
from projectflow.monitoring.metrics import MetricsCollector, metrics_collector
from projectflow.schemas.assistance import AssistanceRequest, AssistanceStatus
from projectflow.schemas.auth import AuthChangeEvent, Session
from projectflow.schemas.common import utc_now
from projectflow.schemas.file import FileDescriptor, UploadBlob
from projectflow.schemas.profile import ProfileUpdate, Role, UserProfile
from projectflow.schemas.project import Project, ProjectCreate, ProjectUpdate, can_set_delivery_date
from projectflow.schemas.realtime import ChangeEvent, ChangeKind
from projectflow.services.file_upload import sanitize_filename, timestamped_path, upload_file
from projectflow.services.reconciliation import (
    apply_change,
    apply_delete,
    apply_insert,
    apply_update,
    sort_newest_first,
)
from projectflow.services.record_gateway import ASSISTANCE_TABLE, PROFILES_TABLE, PROJECTS_TABLE

logger = logging.getLogger(__name__)


class DataStoreError(Exception):
    """Base exception for data store errors"""
    pass


class ProfileNotResolvedError(DataStoreError):
    """Operation needs a resolved profile and the session has none"""
    pass


class PermissionDeniedError(DataStoreError):
    """Session role may not perform this operation"""
    pass


class BulkLoadError(DataStoreError):
    """Initial role-scoped load failed"""
    pass


class ProjectNotFoundError(DataStoreError):
    """Project is not in the session's cached collection"""
    pass


class RoleChangeError(DataStoreError):
    """Roles are fixed when a profile is created"""
    pass


class SessionState(str, Enum):
    """Lifecycle of the store for the current auth session"""
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING_PROFILE = "resolving_profile"
    READY = "ready"


class PendingCleanup(BaseModel):
    """
    Marker for a multi-step operation that failed after some steps committed.

    Nothing is rolled back automatically; the marker tells an operator what
    was done and which blobs may be orphaned.
    """

    operation: str = Field(..., description="Store operation that failed")
    target_id: Optional[str] = Field(None, description="Record the operation was acting on")
    completed_steps: List[str] = Field(default_factory=list, description="Steps that committed")
    bucket: Optional[str] = Field(None, description="Bucket holding the listed paths")
    storage_paths: List[str] = Field(default_factory=list, description="Blobs possibly orphaned")
    error: str = Field(..., description="Error that stopped the operation")
    recorded_at: datetime = Field(default_factory=utc_now)


def _tracked(operation: str):
    """Record the outcome of a mutation in the store metrics"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                result = await func(self, *args, **kwargs)
            except Exception:
                self.metrics.record_mutation(operation, "failure")
                raise
            self.metrics.record_mutation(operation, "success")
            return result
        return wrapper
    return decorator


class DataStore:
    """
    Client-side cache of the portal records visible to the signed-in user.

    On every auth-state change the store resolves the user's profile, opens
    realtime subscriptions, bulk-loads the records the role may see (admins:
    everything, clients: their own projects and assistance requests) and then
    keeps the collections in sync from the change feed. Mutations write
    through the record gateway and apply the stored row locally; the echoed
    change event is then a no-op.

    Collections are exposed as tuples ordered newest first (profiles keep
    arrival order). They are only trustworthy while `loading` is False and
    `load_error` is None.
    """

    def __init__(
        self,
        auth,
        records,
        realtime,
        storage,
        metrics: Optional[MetricsCollector] = None,
        project_bucket: Optional[str] = None,
        contract_bucket: Optional[str] = None,
    ):
        self.auth = auth
        self.records = records
        self.realtime = realtime
        self.storage = storage
        self.metrics = metrics or metrics_collector
        self.project_bucket = project_bucket or settings.project_files_bucket
        self.contract_bucket = contract_bucket or settings.contracts_bucket

        self._state = SessionState.UNAUTHENTICATED
        self._loading = False
        self._load_error: Optional[BulkLoadError] = None
        self._user_profile: Optional[UserProfile] = None
        self._projects: List[Project] = []
        self._clients: List[UserProfile] = []
        self._admins: List[UserProfile] = []
        self._assistance_requests: List[AssistanceRequest] = []
        self._pending_cleanups: List[PendingCleanup] = []

        self._generation = 0
        self._resolution_task: Optional[asyncio.Task] = None
        self._auth_subscription = None
        self._channels: List[Any] = []
        self._channel_tasks: Set[asyncio.Task] = set()
        self._buffered_events: List[ChangeEvent] = []

    # Read-only views

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def load_error(self) -> Optional[BulkLoadError]:
        return self._load_error

    @property
    def user_profile(self) -> Optional[UserProfile]:
        return self._user_profile

    @property
    def projects(self) -> Tuple[Project, ...]:
        return tuple(self._projects)

    @property
    def clients(self) -> Tuple[UserProfile, ...]:
        return tuple(self._clients)

    @property
    def admins(self) -> Tuple[UserProfile, ...]:
        return tuple(self._admins)

    @property
    def assistance_requests(self) -> Tuple[AssistanceRequest, ...]:
        return tuple(self._assistance_requests)

    @property
    def pending_cleanups(self) -> Tuple[PendingCleanup, ...]:
        return tuple(self._pending_cleanups)

    def acknowledge_cleanup(self, cleanup: PendingCleanup) -> None:
        """Forget a pending cleanup once it has been handled"""
        if cleanup in self._pending_cleanups:
            self._pending_cleanups.remove(cleanup)
            self.metrics.set_pending_cleanups(len(self._pending_cleanups))

    # Lifecycle

    async def start(self) -> None:
        """
        Listen for auth-state changes and resolve the current session.

        Returns once the first resolution (profile plus bulk load) has
        finished, successfully or not.
        """
        if self._auth_subscription is not None:
            return

        self._auth_subscription = self.auth.on_auth_state_change(self._on_auth_state_change)
        session = await self.auth.get_current_session()
        self._on_auth_state_change(AuthChangeEvent.INITIAL_SESSION, session)
        await self.wait_until_idle()

    async def stop(self) -> None:
        """Stop listening, close realtime channels and clear all state"""
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None

        self._generation += 1
        task, self._resolution_task = self._resolution_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        await self.wait_until_idle()
        await self._close_channels()
        self._reset()
        logger.info("Data store stopped")

    async def wait_until_idle(self) -> None:
        """Wait for the in-flight session resolution and any channel setup or teardown it started"""
        while True:
            pending = {task for task in self._channel_tasks if not task.done()}
            if self._resolution_task is not None and not self._resolution_task.done():
                pending.add(self._resolution_task)
            if not pending:
                return
            await asyncio.wait(pending)

    def _on_auth_state_change(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        user_id = session.user_id if session else None
        logger.info(f"Auth state change {event.value} (user {user_id})")

        self._generation += 1
        previous = self._resolution_task
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
            self.metrics.record_profile_resolution("superseded")

        self._resolution_task = asyncio.create_task(
            self._resolve_session(self._generation, session)
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _reset(self) -> None:
        self._state = SessionState.UNAUTHENTICATED
        self._loading = False
        self._load_error = None
        self._user_profile = None
        self._projects = []
        self._clients = []
        self._admins = []
        self._assistance_requests = []
        self._buffered_events = []

    # Session resolution

    async def _resolve_session(self, generation: int, session: Optional[Session]) -> None:
        if session is None:
            self._reset()
            await self._close_channels()
            return

        if self._user_profile is not None and self._user_profile.id != session.user_id:
            self._reset()
        self._state = SessionState.RESOLVING_PROFILE
        self._loading = True
        self._buffered_events = []
        await self._close_channels()

        try:
            profile = await self._fetch_profile(session.user_id)
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error(f"Could not resolve profile for {session.user_id}, signing out: {e}")
            self.metrics.record_profile_resolution("failed")
            self._reset()
            try:
                await self.auth.sign_out()
            except Exception as sign_out_error:
                logger.error(f"Forced sign-out failed: {sign_out_error}")
            return

        if not self._is_current(generation):
            return

        self._user_profile = profile
        self._state = SessionState.READY
        self.metrics.record_profile_resolution("ready")
        logger.info(f"Resolved {profile.role.value} profile {profile.id}")

        await self._open_channels(generation)
        if not self._is_current(generation):
            return

        await self._bulk_load(generation, profile)

    async def _fetch_profile(self, user_id: str) -> UserProfile:
        rows = await self.records.select(PROFILES_TABLE, filters={"id": user_id})
        if not rows:
            raise ProfileNotResolvedError(f"No profile row for {user_id}")
        return UserProfile.model_validate(rows[0])

    async def _open_channels(self, generation: int) -> None:
        """Subscribe before loading so no change between load and subscribe is lost"""
        for table in (PROJECTS_TABLE, PROFILES_TABLE, ASSISTANCE_TABLE):
            await asyncio.shield(self._spawn_channel_task(self._subscribe(table, generation)))
            if not self._is_current(generation):
                return

    async def _close_channels(self) -> None:
        channels, self._channels = self._channels, []
        if channels:
            await asyncio.shield(self._spawn_channel_task(self._unsubscribe_all(channels)))

    def _spawn_channel_task(self, coro) -> asyncio.Task:
        """Run channel setup or teardown so that cancelling the resolution cannot interrupt it"""
        task = asyncio.create_task(coro)
        self._channel_tasks.add(task)
        task.add_done_callback(self._channel_tasks.discard)
        return task

    async def _subscribe(self, table: str, generation: int) -> None:
        try:
            channel = await self.realtime.subscribe(table, self._change_handler(generation))
        except Exception as e:
            logger.error(f"Realtime subscription to {table} failed, changes will not sync: {e}")
            return

        # Superseded while subscribing
        if not self._is_current(generation):
            await self._unsubscribe_all([channel])
            return
        self._channels.append(channel)

    async def _unsubscribe_all(self, channels: List[Any]) -> None:
        for channel in channels:
            try:
                await self.realtime.unsubscribe(channel)
            except Exception as e:
                logger.warning(f"Error closing realtime channel: {e}")

    def _change_handler(self, generation: int) -> Callable[[ChangeEvent], None]:
        def handle(event: ChangeEvent) -> None:
            if not self._is_current(generation):
                self.metrics.record_event(event.table, event.kind.value, "ignored")
                return
            if self._loading:
                self._buffered_events.append(event)
                self.metrics.record_event(event.table, event.kind.value, "buffered")
                return
            self.apply_change_event(event)
        return handle

    async def _bulk_load(self, generation: int, profile: UserProfile) -> None:
        """Fetch the role's collections concurrently; any failure fails the whole load"""
        role = profile.role.value
        started = time.perf_counter()

        try:
            if profile.is_admin:
                project_rows, profile_rows, request_rows = await self._gather_all(
                    self.records.select(PROJECTS_TABLE, order_by="created_at"),
                    self.records.select(PROFILES_TABLE),
                    self.records.select(ASSISTANCE_TABLE, order_by="created_at"),
                )
            else:
                profile_rows = []
                project_rows, request_rows = await self._gather_all(
                    self.records.select(
                        PROJECTS_TABLE, filters={"clientuid": profile.id}, order_by="created_at"
                    ),
                    self.records.select(
                        ASSISTANCE_TABLE, filters={"clientUid": profile.id}, order_by="created_at"
                    ),
                )

            projects = sort_newest_first([Project.model_validate(row) for row in project_rows])
            profiles = [UserProfile.model_validate(row) for row in profile_rows]
            requests = sort_newest_first(
                [AssistanceRequest.model_validate(row) for row in request_rows]
            )
        except Exception as e:
            if not self._is_current(generation):
                return
            duration = time.perf_counter() - started
            logger.error(f"Bulk load for {role} {profile.id} failed: {e}")
            self.metrics.record_bulk_load(role, "failure", duration)
            self._load_error = BulkLoadError(f"Failed to load {role} records: {e}")
            self._buffered_events = []
            self._loading = False
            return

        if not self._is_current(generation):
            return

        self._projects = projects
        self._clients = [p for p in profiles if p.role == Role.CLIENT]
        self._admins = [p for p in profiles if p.role == Role.ADMIN]
        self._assistance_requests = requests
        self._load_error = None
        self._loading = False

        buffered, self._buffered_events = self._buffered_events, []
        for event in buffered:
            self.apply_change_event(event)

        duration = time.perf_counter() - started
        self.metrics.record_bulk_load(role, "success", duration)
        logger.info(
            f"Loaded {len(projects)} project(s), {len(profiles)} profile(s) and "
            f"{len(requests)} assistance request(s) for {role} {profile.id} "
            f"in {duration:.3f}s ({len(buffered)} buffered change(s) replayed)"
        )

    @staticmethod
    async def _gather_all(*coros) -> List[Any]:
        tasks = [asyncio.ensure_future(coro) for coro in coros]
        try:
            return await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # Realtime reconciliation

    def apply_change_event(self, event: ChangeEvent) -> bool:
        """
        Reconcile one change event into the cached collections.

        Events outside the session's scope and malformed rows are dropped.

        Returns:
            True if the event was applied
        """
        handlers = {
            PROJECTS_TABLE: self._apply_project_change,
            PROFILES_TABLE: self._apply_profile_change,
            ASSISTANCE_TABLE: self._apply_assistance_change,
        }
        handler = handlers.get(event.table)
        if handler is None or self._user_profile is None:
            self.metrics.record_event(event.table, event.kind.value, "ignored")
            return False

        try:
            applied = handler(event)
        except ValidationError as e:
            logger.warning(f"Rejected {event.kind.value} on {event.table}: {e}")
            self.metrics.record_event(event.table, event.kind.value, "rejected")
            return False

        self.metrics.record_event(event.table, event.kind.value, "applied" if applied else "ignored")
        return applied

    def _in_scope(self, owner_id: str) -> bool:
        return self._user_profile.is_admin or owner_id == self._user_profile.id

    def _apply_project_change(self, event: ChangeEvent) -> bool:
        if event.kind == ChangeKind.DELETE:
            self._projects = apply_delete(self._projects, event.record_id)
            return True

        project = Project.model_validate(event.new)
        if not self._in_scope(project.client_id):
            # Reassigned away from this client
            if event.kind == ChangeKind.UPDATE:
                self._projects = apply_delete(self._projects, project.id)
                return True
            return False

        self._projects = apply_change(self._projects, event.kind, project)
        return True

    def _apply_assistance_change(self, event: ChangeEvent) -> bool:
        if event.kind == ChangeKind.DELETE:
            self._assistance_requests = apply_delete(self._assistance_requests, event.record_id)
            return True

        request = AssistanceRequest.model_validate(event.new)
        if not self._in_scope(request.client_id):
            return False

        self._assistance_requests = apply_change(self._assistance_requests, event.kind, request)
        return True

    def _apply_profile_change(self, event: ChangeEvent) -> bool:
        if event.kind == ChangeKind.DELETE:
            self._clients = apply_delete(self._clients, event.record_id)
            self._admins = apply_delete(self._admins, event.record_id)
            return True

        changed = UserProfile.model_validate(event.new)
        cached = self._find_profile(changed.id)
        if cached is not None and cached.role != changed.role:
            logger.warning(
                f"Ignoring role change of profile {changed.id} "
                f"from {cached.role.value} to {changed.role.value}"
            )
            return False

        if changed.id == self._user_profile.id:
            self._user_profile = changed
        elif not self._user_profile.is_admin:
            return False

        self._merge_profile(changed, event.kind)
        return True

    def _find_profile(self, profile_id: str) -> Optional[UserProfile]:
        if self._user_profile is not None and self._user_profile.id == profile_id:
            return self._user_profile
        for profile in self._clients + self._admins:
            if profile.id == profile_id:
                return profile
        return None

    def _merge_profile(self, profile: UserProfile, kind: ChangeKind = ChangeKind.UPDATE) -> None:
        if self._user_profile is not None and self._user_profile.id == profile.id:
            self._user_profile = profile
        if self._user_profile is None or not self._user_profile.is_admin:
            return

        if profile.role == Role.CLIENT:
            self._clients = apply_change(self._clients, kind, profile, ordered=False)
        else:
            self._admins = apply_change(self._admins, kind, profile, ordered=False)

    # Guards and saga bookkeeping

    def _require_profile(self) -> UserProfile:
        if self._user_profile is None or self._state != SessionState.READY:
            raise ProfileNotResolvedError("No resolved profile for the current session")
        return self._user_profile

    def _require_admin(self, operation: str) -> UserProfile:
        profile = self._require_profile()
        if not profile.is_admin:
            raise PermissionDeniedError(f"{operation} requires an admin session")
        return profile

    def _record_cleanup(
        self,
        operation: str,
        target_id: Optional[str],
        completed_steps: Sequence[str],
        bucket: Optional[str],
        storage_paths: Sequence[str],
        error: Exception,
    ) -> PendingCleanup:
        cleanup = PendingCleanup(
            operation=operation,
            target_id=target_id,
            completed_steps=list(completed_steps),
            bucket=bucket,
            storage_paths=list(storage_paths),
            error=f"{type(error).__name__}: {error}",
        )
        self._pending_cleanups.append(cleanup)
        self.metrics.set_pending_cleanups(len(self._pending_cleanups))
        logger.warning(
            f"{operation} on {target_id} stopped after {list(completed_steps)}; "
            f"possibly orphaned blobs in {bucket}: {list(storage_paths)}"
        )
        return cleanup

    async def _upload_many(
        self,
        operation: str,
        blobs: Sequence[UploadBlob],
        path_for: Callable[[UploadBlob], str],
        bucket: str,
        target_id: Optional[str] = None,
    ) -> List[FileDescriptor]:
        """Upload blobs concurrently; on any failure the first error is raised"""
        if not blobs:
            return []

        results = await asyncio.gather(
            *(upload_file(self.storage, blob, path_for(blob), bucket) for blob in blobs),
            return_exceptions=True,
        )
        uploaded = [r for r in results if isinstance(r, FileDescriptor)]
        failures = [r for r in results if isinstance(r, BaseException)]

        if failures:
            if uploaded:
                self._record_cleanup(
                    operation, target_id, ["upload_files"], bucket,
                    [f.id for f in uploaded], failures[0],
                )
            raise failures[0]
        return uploaded

    # Mutations

    @_tracked("add_project")
    async def add_project(
        self,
        data: Union[ProjectCreate, Mapping[str, Any]],
        new_photo_files: Sequence[UploadBlob] = (),
    ) -> Project:
        """
        Create a project, uploading its initial files first.

        Args:
            data: Project fields
            new_photo_files: Files to attach

        Returns:
            The stored project
        """
        self._require_admin("add_project")
        if not isinstance(data, ProjectCreate):
            data = ProjectCreate.model_validate(data)

        files = await self._upload_many(
            "add_project", new_photo_files,
            lambda blob: timestamped_path("projects", blob.name), self.project_bucket,
        )
        row = data.to_row()
        row["files"] = [f.to_row() for f in files]

        try:
            stored = await self.records.insert(PROJECTS_TABLE, row)
        except Exception as e:
            if files:
                self._record_cleanup(
                    "add_project", None, ["upload_files"], self.project_bucket,
                    [f.id for f in files], e,
                )
            raise

        project = Project.model_validate(stored)
        self._projects = apply_insert(self._projects, project)
        logger.info(f"Added project {project.id} for client {project.client_id} with {len(files)} file(s)")
        return project

    @_tracked("update_project")
    async def update_project(
        self,
        project_id: str,
        data: Union[ProjectUpdate, Mapping[str, Any]],
        new_photo_files: Sequence[UploadBlob] = (),
    ) -> Project:
        """
        Update project fields and append newly uploaded files.

        Raises:
            ProjectNotFoundError: If the project is not cached for this session
            ValueError: If a delivery date is set before the measurement stage
        """
        self._require_admin("update_project")
        current = self.get_project_by_id(project_id)
        if current is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        if not isinstance(data, ProjectUpdate):
            data = ProjectUpdate.model_validate(data)

        # A stored date survives a status rollback; only a newly set one is gated
        status = data.status or current.status
        setting_date = "delivery_date" in data.model_fields_set and data.delivery_date is not None
        if setting_date and not can_set_delivery_date(status):
            raise ValueError(f"Delivery date cannot be set while project is '{status.value}'")

        uploaded = await self._upload_many(
            "update_project", new_photo_files,
            lambda blob: timestamped_path(f"projects/{project_id}", blob.name),
            self.project_bucket, target_id=project_id,
        )
        row = data.to_row()
        row["files"] = [f.to_row() for f in list(current.files) + uploaded]

        try:
            stored = await self.records.update(PROJECTS_TABLE, project_id, row)
        except Exception as e:
            if uploaded:
                self._record_cleanup(
                    "update_project", project_id, ["upload_files"], self.project_bucket,
                    [f.id for f in uploaded], e,
                )
            raise

        project = Project.model_validate(stored)
        self._projects = apply_update(self._projects, project)
        logger.info(f"Updated project {project_id} ({len(uploaded)} new file(s))")
        return project

    @_tracked("delete_file_from_project")
    async def delete_file_from_project(self, project_id: str, file: FileDescriptor) -> Project:
        """Remove one blob and drop its descriptor from the project"""
        self._require_admin("delete_file_from_project")
        current = self.get_project_by_id(project_id)
        if current is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")

        await self.storage.remove(self.project_bucket, [file.id])
        remaining = [f.to_row() for f in current.files if f.id != file.id]

        try:
            stored = await self.records.update(PROJECTS_TABLE, project_id, {"files": remaining})
        except Exception as e:
            self._record_cleanup(
                "delete_file_from_project", project_id, ["remove_file"], self.project_bucket,
                [file.id], e,
            )
            raise

        project = Project.model_validate(stored)
        self._projects = apply_update(self._projects, project)
        logger.info(f"Deleted file {file.id} from project {project_id}")
        return project

    @_tracked("delete_project")
    async def delete_project(self, project_id: str) -> None:
        """
        Delete a project with its blobs and assistance requests.

        Steps run in order: project blobs, assistance requests, their photos,
        the project row. A failure after a committed step leaves a
        PendingCleanup marker and re-raises.
        """
        self._require_admin("delete_project")
        project = self.get_project_by_id(project_id)
        paths = [f.id for f in project.files] if project else []
        completed: List[str] = []

        try:
            if paths:
                await self.storage.remove(self.project_bucket, paths)
                completed.append("remove_project_files")

            deleted_requests = await self.records.delete_where(ASSISTANCE_TABLE, "projectId", project_id)
            completed.append("delete_assistance_requests")

            photo_paths = [
                photo["id"]
                for row in deleted_requests
                for photo in (row.get("photos") or [])
                if photo.get("id")
            ]
            if photo_paths:
                paths = paths + photo_paths
                await self.storage.remove(self.project_bucket, photo_paths)
                completed.append("remove_request_photos")

            await self.records.delete(PROJECTS_TABLE, project_id)
            completed.append("delete_project")
        except Exception as e:
            if completed:
                self._record_cleanup("delete_project", project_id, completed, self.project_bucket, paths, e)
            raise

        self._assistance_requests = [r for r in self._assistance_requests if r.project_id != project_id]
        self._projects = apply_delete(self._projects, project_id)
        logger.info(f"Deleted project {project_id} with {len(deleted_requests)} assistance request(s)")

    @_tracked("update_user_in_db")
    async def update_user_in_db(
        self,
        user_id: str,
        data: Union[ProfileUpdate, Mapping[str, Any]],
    ) -> UserProfile:
        """
        Update profile fields. Admins may update anyone, clients only themselves.

        Raises:
            RoleChangeError: If the update tries to change the role
        """
        profile = self._require_profile()
        if not profile.is_admin and user_id != profile.id:
            raise PermissionDeniedError("Clients may only update their own profile")
        if not isinstance(data, ProfileUpdate):
            if "role" in data:
                raise RoleChangeError("Profile roles cannot be changed")
            data = ProfileUpdate.model_validate(data)

        stored = await self.records.update(PROFILES_TABLE, user_id, data.to_row())
        updated = UserProfile.model_validate(stored)
        self._merge_profile(updated)
        logger.info(f"Updated profile {user_id}: {sorted(data.model_fields_set)}")
        return updated

    @_tracked("add_contract_to_client")
    async def add_contract_to_client(self, client_id: str, file: UploadBlob) -> UserProfile:
        """Upload a client's contract (replacing the previous one at the same path) and link it"""
        self._require_admin("add_contract_to_client")
        path = f"contracts/{client_id}/{sanitize_filename(file.name)}"
        contract = await upload_file(self.storage, file, path, self.contract_bucket)

        try:
            stored = await self.records.update(
                PROFILES_TABLE, client_id, ProfileUpdate(contract=contract).to_row()
            )
        except Exception as e:
            self._record_cleanup(
                "add_contract_to_client", client_id, ["upload_contract"], self.contract_bucket,
                [contract.id], e,
            )
            raise

        updated = UserProfile.model_validate(stored)
        self._merge_profile(updated)
        logger.info(f"Attached contract {contract.id} to client {client_id}")
        return updated

    @_tracked("add_user_to_db")
    async def add_user_to_db(self, profile: Union[UserProfile, Mapping[str, Any]]) -> UserProfile:
        """Create the profile row for a newly registered identity"""
        if not isinstance(profile, UserProfile):
            profile = UserProfile.model_validate(profile)

        stored = UserProfile.model_validate(await self.records.insert(PROFILES_TABLE, profile.to_row()))
        self._merge_profile(stored, ChangeKind.INSERT)
        logger.info(f"Created {stored.role.value} profile {stored.id}")
        return stored

    @_tracked("add_assistance_request")
    async def add_assistance_request(
        self,
        project_id: str,
        description: str,
        photos: Sequence[UploadBlob] = (),
    ) -> AssistanceRequest:
        """
        Open an assistance request on one of the client's projects.

        The request starts as Aberto with an empty response.

        Raises:
            ProfileNotResolvedError: If no profile is resolved
            PermissionDeniedError: If the project does not belong to the client
        """
        profile = self._require_profile()
        if profile.is_admin:
            raise PermissionDeniedError("Assistance requests are opened by clients")
        project = self.get_project_by_id(project_id)
        if project is None or project.client_id != profile.id:
            raise PermissionDeniedError(f"Project {project_id} does not belong to client {profile.id}")

        uploaded = await self._upload_many(
            "add_assistance_request", photos,
            lambda blob: timestamped_path(f"assistance/{profile.id}", blob.name),
            self.project_bucket,
        )
        row: Dict[str, Any] = {
            "projectId": project_id,
            "clientUid": profile.id,
            "clientName": profile.name,
            "description": description,
            "status": AssistanceStatus.OPEN.value,
            "response": "",
            "photos": [p.to_row() for p in uploaded],
        }

        try:
            stored = await self.records.insert(ASSISTANCE_TABLE, row)
        except Exception as e:
            if uploaded:
                self._record_cleanup(
                    "add_assistance_request", project_id, ["upload_files"], self.project_bucket,
                    [p.id for p in uploaded], e,
                )
            raise

        request = AssistanceRequest.model_validate(stored)
        self._assistance_requests = apply_insert(self._assistance_requests, request)
        logger.info(f"Opened assistance request {request.id} on project {project_id}")
        return request

    @_tracked("update_assistance_request")
    async def update_assistance_request(
        self,
        request_id: str,
        status: Union[AssistanceStatus, str],
        response: str,
    ) -> AssistanceRequest:
        """Set a request's status and admin response (any status transition is allowed)"""
        self._require_admin("update_assistance_request")
        status = AssistanceStatus(status)

        stored = await self.records.update(
            ASSISTANCE_TABLE, request_id, {"status": status.value, "response": response}
        )
        request = AssistanceRequest.model_validate(stored)
        self._assistance_requests = apply_update(self._assistance_requests, request)
        logger.info(f"Assistance request {request_id} is now {status.value}")
        return request

    @_tracked("delete_user")
    async def delete_user(self, user_id: str) -> None:
        """Delete a profile row; the identity itself is managed elsewhere"""
        self._require_admin("delete_user")
        await self.records.delete(PROFILES_TABLE, user_id)
        self._clients = apply_delete(self._clients, user_id)
        self._admins = apply_delete(self._admins, user_id)
        logger.info(f"Deleted profile {user_id}")

    # Readers

    def get_projects_by_client(self, client_id: str) -> List[Project]:
        return [p for p in self._projects if p.client_id == client_id]

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def get_requests_by_project(self, project_id: str) -> List[AssistanceRequest]:
        return [r for r in self._assistance_requests if r.project_id == project_id]
