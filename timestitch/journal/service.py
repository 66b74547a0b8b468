"""Data-access facade for projects and memories.

All mutations go through JournalService. Each one validates first, applies
the change to the in-memory collections optimistically, then either writes
it through to the remote or appends it to the pending change log.
"""

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..errors import (
    EntityNotFoundError,
    PersistenceError,
    RemoteRejectedError,
    RemoteUnavailableError,
    TimeStitchError,
    ValidationError,
)
from ..images import DEFAULT_MAX_FILE_SIZE, optimize_image, validate_image
from ..models import Memory, Project, new_id, validate_memory, validate_project
from ..sync.change_log import ChangeKind, ChangeLog, EntityType, PendingChange
from ..sync.connectivity import ConnectivityMonitor
from .autotag import extract_location, generate_auto_tags, merge_tags

if TYPE_CHECKING:
    from ..local.offline_cache import OfflineCache
    from ..remote.client import RemoteClient

logger = logging.getLogger(__name__)


class MutationStatus(Enum):
    """Outcome of a facade mutation."""

    SUCCESS = "success"  # confirmed by the remote
    QUEUED = "queued"  # appended to the pending change log
    REJECTED = "rejected"  # refused; only reported by bulk operations


@dataclass
class MutationResult:
    """Result of a facade mutation."""

    status: MutationStatus
    entity_id: str
    entity: Project | Memory | None = None
    change: PendingChange | None = None
    error: str | None = None

    @property
    def queued(self) -> bool:
        return self.status == MutationStatus.QUEUED


# Previous values of the entities a mutation touched; None means absent
_Undo = tuple[dict[str, Project | None], dict[str, Memory | None]]


class JournalService:
    """Typed CRUD over projects and memories with offline fallback.

    Mutations are written through to the remote when it is reachable and
    nothing is already queued; otherwise they are appended to the change
    log for the sync engine to replay. Remote rejections roll the
    in-memory state back and propagate to the caller.
    """

    def __init__(
        self,
        remote: "RemoteClient",
        change_log: ChangeLog,
        monitor: ConnectivityMonitor,
        cache: "OfflineCache | None" = None,
        call_timeout_seconds: float = 10.0,
        image_max_width: int = 1920,
        image_quality: int = 80,
        max_image_bytes: int = DEFAULT_MAX_FILE_SIZE,
    ):
        """Initialize the service.

        Args:
            remote: Remote collaborator for write-through and loading.
            change_log: Pending change log used when the remote is unreachable.
            monitor: Connectivity monitor.
            cache: Optional offline cache for entity snapshots.
            call_timeout_seconds: Timeout for each remote call.
            image_max_width: Images wider than this are downscaled on upload.
            image_quality: JPEG quality used when re-encoding uploads.
            max_image_bytes: Largest accepted upload.
        """
        self.remote = remote
        self.log = change_log
        self.monitor = monitor
        self.cache = cache
        self.call_timeout_seconds = call_timeout_seconds
        self.image_max_width = image_max_width
        self.image_quality = image_quality
        self.max_image_bytes = max_image_bytes

        self._projects: dict[str, Project] = {}
        self._memories: dict[str, Memory] = {}

    # ==================== Read access ====================

    @property
    def projects(self) -> list[Project]:
        return list(self._projects.values())

    @property
    def memories(self) -> list[Memory]:
        return list(self._memories.values())

    def get_project(self, project_id: str) -> Project:
        try:
            return self._projects[project_id]
        except KeyError:
            raise EntityNotFoundError(f"Project {project_id} not found") from None

    def get_memory(self, memory_id: str) -> Memory:
        try:
            return self._memories[memory_id]
        except KeyError:
            raise EntityNotFoundError(f"Memory {memory_id} not found") from None

    def memories_in(self, project_id: str | None) -> list[Memory]:
        """Memories filed under project_id; None returns unfiled memories.

        A memory pointing at a project that no longer exists counts as
        unfiled.
        """
        if project_id is None:
            return [
                m for m in self._memories.values()
                if m.project_id is None or m.project_id not in self._projects
            ]
        return [m for m in self._memories.values() if m.project_id == project_id]

    def project_stats(self, project_id: str) -> dict[str, int]:
        """Memory, image and favorite counts for one project."""
        self.get_project(project_id)
        memories = self.memories_in(project_id)
        return {
            "memory_count": len(memories),
            "image_count": sum(len(m.image_urls) for m in memories),
            "favorite_count": sum(1 for m in memories if m.is_favorite),
        }

    # ==================== Loading ====================

    async def refresh(self) -> bool:
        """Reload entities from the remote, falling back to the offline cache.

        The remote is skipped while changes are pending, since its state
        does not include them yet.

        Returns:
            True if the data came from the remote.
        """
        if not self.monitor.is_online() or len(self.log) > 0:
            self.load_cached()
            return False

        try:
            project_rows = await self._call_remote(
                self.remote.list_entities(EntityType.PROJECT)
            )
            memory_rows = await self._call_remote(
                self.remote.list_entities(EntityType.MEMORY)
            )
        except RemoteUnavailableError as e:
            logger.warning(f"Could not load from remote, using offline cache: {e}")
            self.load_cached()
            return False

        self._projects = {p.id: p for p in (Project.from_row(r) for r in project_rows)}
        self._memories = {m.id: m for m in (Memory.from_row(r) for r in memory_rows)}
        self._recount()
        self._save_cache()
        logger.info(
            f"Loaded {len(self._projects)} projects and {len(self._memories)} memories"
        )
        return True

    def load_cached(self) -> None:
        """Load entities from the offline cache."""
        if self.cache is None:
            return
        projects, memories = self.cache.load_snapshot()
        self._projects = {p.id: p for p in projects}
        self._memories = {m.id: m for m in memories}
        self._recount()
        logger.info(
            f"Loaded {len(projects)} projects and {len(memories)} memories from cache"
        )

    # ==================== Internals ====================

    def _restore(self, undo: _Undo) -> None:
        """Put back the entities one mutation touched, leaving the rest alone.

        Other calls may have completed while the mutation was awaiting
        the remote, so only its own entries are reverted.
        """
        projects, memories = undo
        for project_id, project in projects.items():
            if project is None:
                self._projects.pop(project_id, None)
            else:
                self._projects[project_id] = project
        for memory_id, memory in memories.items():
            if memory is None:
                self._memories.pop(memory_id, None)
            else:
                self._memories[memory_id] = memory
        self._recount()

    def _recount(self) -> None:
        """Recompute every project's memory_count from the memories."""
        counts = Counter(m.project_id for m in self._memories.values() if m.project_id)
        for project_id, project in self._projects.items():
            count = counts.get(project_id, 0)
            if project.memory_count != count:
                self._projects[project_id] = replace(project, memory_count=count)

    def _save_cache(self) -> None:
        if self.cache is None:
            return
        try:
            self.cache.save_snapshot(self.projects, self.memories)
        except PersistenceError as e:
            logger.warning(f"Could not update offline cache: {e}")

    async def _call_remote(self, call: Awaitable[Any]) -> Any:
        """Await a remote call; a timeout counts as unavailability."""
        try:
            return await asyncio.wait_for(call, timeout=self.call_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailableError(
                f"Remote call timed out after {self.call_timeout_seconds}s"
            ) from e

    def _should_queue(self) -> bool:
        # Queued changes must reach the remote first, so new ones line up behind them
        return not self.monitor.is_online() or len(self.log) > 0

    def _enqueue(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any] | None,
        undo: _Undo,
    ) -> PendingChange:
        try:
            return self.log.append(kind, entity_type, entity_id, payload)
        except PersistenceError:
            self._restore(undo)
            raise

    async def _write(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any] | None,
        undo: _Undo,
        remote_call: Callable[[], Awaitable[Any]],
    ) -> tuple[MutationStatus, Any, PendingChange | None]:
        """Write through to the remote, or queue the change.

        The in-memory state must already hold the optimistic change;
        undo holds what to put back if the change cannot stand.
        """
        if self._should_queue():
            change = self._enqueue(kind, entity_type, entity_id, payload, undo)
            return MutationStatus.QUEUED, None, change

        try:
            row = await self._call_remote(remote_call())
        except RemoteUnavailableError as e:
            logger.info(
                f"Remote unavailable, queueing {kind.value} {entity_type.value} "
                f"{entity_id}: {e}"
            )
            change = self._enqueue(kind, entity_type, entity_id, payload, undo)
            return MutationStatus.QUEUED, None, change
        except RemoteRejectedError as e:
            logger.warning(
                f"Remote rejected {kind.value} {entity_type.value} {entity_id}: {e}"
            )
            self._restore(undo)
            raise

        return MutationStatus.SUCCESS, row, None

    async def _delete_orphan(self, entity_type: EntityType, remote_id: str) -> MutationResult:
        """Remove a remote row whose local entity was deleted during its create.

        The local delete targeted the optimistic id, so the row the remote
        created under its own id is deleted (or queued for deletion) here.
        """
        logger.info(
            f"{entity_type.value.capitalize()} {remote_id} was deleted while "
            f"being created, deleting it remotely"
        )
        status, _, change = await self._write(
            ChangeKind.DELETE,
            entity_type,
            remote_id,
            None,
            ({}, {}),
            lambda: self.remote.delete_entity(entity_type, remote_id),
        )
        self._recount()
        self._save_cache()
        return MutationResult(status, remote_id, None, change)

    def _check_project_ref(self, project_id: str | None) -> None:
        if project_id is not None and project_id not in self._projects:
            raise ValidationError(f"Project {project_id} does not exist")

    # ==================== Projects ====================

    async def create_project(
        self,
        name: str,
        description: str,
        color: str,
        tags: list[str] | None = None,
        is_public: bool = False,
        collaborators: list[str] | None = None,
    ) -> MutationResult:
        """Create a project.

        Raises:
            ValidationError: Missing or invalid fields.
            RemoteRejectedError: The remote refused the create.
            PersistenceError: The change could not be queued durably.
        """
        project = Project(
            id=new_id(),
            name=(name or "").strip(),
            description=(description or "").strip(),
            color=color,
            tags=list(tags or []),
            is_public=is_public,
            collaborators=list(collaborators or []),
        )
        errors = validate_project(project, self._projects.values())
        if errors:
            raise ValidationError(errors)

        undo: _Undo = ({project.id: None}, {})
        self._projects[project.id] = project

        row = project.to_row()
        remote_row = {k: v for k, v in row.items() if k != "id"}
        status, created, change = await self._write(
            ChangeKind.CREATE,
            EntityType.PROJECT,
            project.id,
            row,
            undo,
            lambda: self.remote.create_entity(EntityType.PROJECT, remote_row),
        )

        if created:
            # Adopt the id assigned by the remote
            if self._projects.pop(project.id, None) is None:
                return await self._delete_orphan(EntityType.PROJECT, created["id"])
            project = Project.from_row({**row, **created})
            self._projects[project.id] = project
        self._recount()
        self._save_cache()

        project = self._projects[project.id]
        logger.info(f"Project {project.id} created ({status.value})")
        return MutationResult(status, project.id, project, change)

    async def update_project(self, project_id: str, patch: dict[str, Any]) -> MutationResult:
        """Apply a partial update to a project."""
        current = self.get_project(project_id)
        if "name" in patch and isinstance(patch["name"], str):
            patch = {**patch, "name": patch["name"].strip()}
        updated = current.apply_patch(patch)
        errors = validate_project(updated, self._projects.values())
        if errors:
            raise ValidationError(errors)

        undo: _Undo = ({project_id: current}, {})
        self._projects[project_id] = updated

        status, _, change = await self._write(
            ChangeKind.UPDATE,
            EntityType.PROJECT,
            project_id,
            dict(patch),
            undo,
            lambda: self.remote.update_entity(EntityType.PROJECT, project_id, dict(patch)),
        )
        self._save_cache()

        logger.info(f"Project {project_id} updated ({status.value})")
        # None if the project was deleted while the update was in flight
        return MutationResult(status, project_id, self._projects.get(project_id), change)

    async def delete_project(self, project_id: str) -> MutationResult:
        """Delete a project; its memories become unfiled."""
        project = self.get_project(project_id)

        undo: _Undo = ({project_id: project}, {})
        del self._projects[project_id]
        for memory in list(self._memories.values()):
            if memory.project_id == project_id:
                undo[1][memory.id] = memory
                self._memories[memory.id] = replace(memory, project_id=None)

        status, _, change = await self._write(
            ChangeKind.DELETE,
            EntityType.PROJECT,
            project_id,
            None,
            undo,
            lambda: self.remote.delete_entity(EntityType.PROJECT, project_id),
        )
        self._save_cache()

        logger.info(f"Project {project_id} deleted ({status.value})")
        return MutationResult(status, project_id, None, change)

    async def toggle_project_favorite(self, project_id: str) -> MutationResult:
        project = self.get_project(project_id)
        return await self.update_project(project_id, {"is_favorite": not project.is_favorite})

    # ==================== Memories ====================

    async def create_memory(
        self,
        title: str,
        description: str,
        date: str | date | None = None,
        image_urls: list[str] | None = None,
        tags: list[str] | None = None,
        project_id: str | None = None,
        location: str | None = None,
        is_favorite: bool = False,
    ) -> MutationResult:
        """Create a memory, merging auto-generated tags into the given ones.

        Raises:
            ValidationError: Missing or invalid fields, or unknown project.
            RemoteRejectedError: The remote refused the create.
            PersistenceError: The change could not be queued durably.
        """
        title = (title or "").strip()
        description = (description or "").strip()
        memory = Memory(
            id=new_id(),
            title=title,
            description=description,
            image_urls=list(image_urls or []),
            tags=merge_tags(list(tags or []), generate_auto_tags(title, description)),
            is_favorite=is_favorite,
            project_id=project_id,
            location=location or extract_location(f"{title}. {description}"),
        )
        if date is not None:
            memory.date = date if isinstance(date, str) else date.isoformat()

        errors = validate_memory(memory)
        if errors:
            raise ValidationError(errors)
        self._check_project_ref(project_id)

        undo: _Undo = ({}, {memory.id: None})
        self._memories[memory.id] = memory
        self._recount()

        row = memory.to_row()
        remote_row = {k: v for k, v in row.items() if k != "id"}
        status, created, change = await self._write(
            ChangeKind.CREATE,
            EntityType.MEMORY,
            memory.id,
            row,
            undo,
            lambda: self.remote.create_entity(EntityType.MEMORY, remote_row),
        )

        if created:
            # Adopt the id assigned by the remote
            if self._memories.pop(memory.id, None) is None:
                return await self._delete_orphan(EntityType.MEMORY, created["id"])
            memory = Memory.from_row({**row, **created})
            self._memories[memory.id] = memory
            self._recount()
        self._save_cache()

        logger.info(f"Memory {memory.id} created ({status.value})")
        return MutationResult(status, memory.id, memory, change)

    async def update_memory(self, memory_id: str, patch: dict[str, Any]) -> MutationResult:
        """Apply a partial update to a memory.

        Changing the title or description regenerates the auto tags.
        """
        current = self.get_memory(memory_id)
        patch = dict(patch)
        updated = current.apply_patch(patch)

        if "title" in patch or "description" in patch:
            auto = generate_auto_tags(updated.title, updated.description)
            updated = replace(updated, tags=merge_tags(updated.tags, auto))
            if updated.tags != current.tags:
                patch["tags"] = list(updated.tags)

        errors = validate_memory(updated)
        if errors:
            raise ValidationError(errors)
        if "project_id" in patch:
            self._check_project_ref(patch["project_id"])

        undo: _Undo = ({}, {memory_id: current})
        self._memories[memory_id] = updated
        self._recount()

        status, _, change = await self._write(
            ChangeKind.UPDATE,
            EntityType.MEMORY,
            memory_id,
            patch,
            undo,
            lambda: self.remote.update_entity(EntityType.MEMORY, memory_id, patch),
        )
        self._save_cache()

        logger.info(f"Memory {memory_id} updated ({status.value})")
        return MutationResult(status, memory_id, self._memories.get(memory_id), change)

    async def delete_memory(self, memory_id: str) -> MutationResult:
        """Delete a memory and recount its project."""
        memory = self.get_memory(memory_id)

        undo: _Undo = ({}, {memory_id: memory})
        del self._memories[memory_id]
        self._recount()

        status, _, change = await self._write(
            ChangeKind.DELETE,
            EntityType.MEMORY,
            memory_id,
            None,
            undo,
            lambda: self.remote.delete_entity(EntityType.MEMORY, memory_id),
        )
        self._save_cache()

        logger.info(f"Memory {memory_id} deleted ({status.value})")
        return MutationResult(status, memory_id, None, change)

    async def toggle_favorite(self, memory_id: str) -> MutationResult:
        """Flip a memory's favorite flag."""
        memory = self.get_memory(memory_id)
        return await self.update_memory(memory_id, {"is_favorite": not memory.is_favorite})

    async def move_memory(self, memory_id: str, project_id: str | None) -> MutationResult:
        """File a memory under another project (None to unfile it)."""
        return await self.update_memory(memory_id, {"project_id": project_id})

    # ==================== Images ====================

    async def add_images(
        self, memory_id: str, files: list[tuple[str, bytes]]
    ) -> MutationResult:
        """Optimise, upload and attach images to a memory.

        Uploads cannot be queued, so this needs the remote to be reachable.

        Args:
            memory_id: Memory to attach the images to.
            files: (filename, content) pairs.

        Raises:
            ValidationError: A file has an unsupported type or is too large.
            RemoteUnavailableError: The remote cannot be reached.
        """
        self.get_memory(memory_id)
        for filename, data in files:
            validate_image(filename, data, self.max_image_bytes)

        if not self.monitor.is_online():
            raise RemoteUnavailableError("Uploading images needs a connection")

        owner = self.remote.user_id or "anonymous"
        urls = []
        for filename, data in files:
            optimized = optimize_image(data, self.image_max_width, self.image_quality)
            path = f"{owner}/{memory_id}/{uuid.uuid4().hex}.jpg"
            urls.append(
                await self._call_remote(
                    self.remote.upload_file(path, optimized, "image/jpeg")
                )
            )
            logger.debug(f"Uploaded {filename} as {path}")

        return await self.update_memory(
            memory_id, {"image_urls": self.get_memory(memory_id).image_urls + urls}
        )

    # ==================== Bulk operations ====================

    async def _bulk(
        self, ids: list[str], operation: Callable[[str], Awaitable[MutationResult]]
    ) -> list[MutationResult]:
        results = []
        for entity_id in ids:
            try:
                results.append(await operation(entity_id))
            except PersistenceError:
                raise
            except TimeStitchError as e:
                logger.warning(f"Bulk operation skipped {entity_id}: {e}")
                results.append(
                    MutationResult(MutationStatus.REJECTED, entity_id, error=str(e))
                )
        return results

    async def bulk_delete_memories(self, memory_ids: list[str]) -> list[MutationResult]:
        return await self._bulk(memory_ids, self.delete_memory)

    async def bulk_toggle_favorites(self, memory_ids: list[str]) -> list[MutationResult]:
        return await self._bulk(memory_ids, self.toggle_favorite)

    async def bulk_move_memories(
        self, memory_ids: list[str], project_id: str | None
    ) -> list[MutationResult]:
        return await self._bulk(
            memory_ids, lambda memory_id: self.move_memory(memory_id, project_id)
        )
