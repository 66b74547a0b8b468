"""Tests for the journal data-access facade."""

import asyncio
import io
from unittest.mock import patch

import pytest
from PIL import Image

from timestitch.errors import (
    EntityNotFoundError,
    PersistenceError,
    RemoteRejectedError,
    RemoteUnavailableError,
    ValidationError,
)
from timestitch.journal import JournalService, MutationStatus
from timestitch.sync import ChangeKind, EntityType, SyncEngine

IMAGE = "https://cdn.example.com/a.jpg"


@pytest.fixture
def journal(remote, change_log, monitor, cache):
    """Create a journal service over mocked remote and in-memory storage."""
    return JournalService(remote, change_log, monitor, cache=cache, call_timeout_seconds=0.5)


async def _project(journal, name="Trips"):
    result = await journal.create_project(name=name, description="Travel", color="sky")
    return result.entity_id


async def _memory(journal, project_id=None, title="Beach", **kwargs):
    result = await journal.create_memory(
        title=title,
        description="Sunny afternoon",
        date="2024-07-01",
        image_urls=[IMAGE],
        project_id=project_id,
        **kwargs,
    )
    return result.entity_id


class TestCreateProject:
    """Tests for creating projects."""

    @pytest.mark.asyncio
    async def test_online_create_adopts_remote_id(self, journal, remote, change_log):
        """Test that an online create is written through and keeps the remote id."""
        result = await journal.create_project(name="Trips", description="Travel", color="sky")

        assert result.status == MutationStatus.SUCCESS
        assert result.entity_id == "remote-project-1"
        assert [p.id for p in journal.projects] == ["remote-project-1"]
        sent = remote.create_entity.await_args.args[1]
        assert "id" not in sent
        assert sent["name"] == "Trips"
        assert len(change_log) == 0

    @pytest.mark.asyncio
    async def test_offline_create_is_queued(self, journal, remote, change_log, monitor):
        """Test that an offline create is applied locally and queued."""
        monitor.set_online(False)

        result = await journal.create_project(name="Trips", description="Travel", color="sky")

        assert result.queued
        assert journal.get_project(result.entity_id).name == "Trips"
        remote.create_entity.assert_not_called()
        [change] = change_log.read_all()
        assert change.kind == ChangeKind.CREATE
        assert change.entity_type == EntityType.PROJECT
        assert change.payload["id"] == result.entity_id

    @pytest.mark.asyncio
    async def test_unavailable_falls_back_to_queue(self, journal, remote, change_log):
        """Test that an unreachable remote queues the change instead of failing."""
        remote.create_entity.side_effect = RemoteUnavailableError("Connection failed")

        result = await journal.create_project(name="Trips", description="Travel", color="sky")

        assert result.status == MutationStatus.QUEUED
        assert journal.get_project(result.entity_id)
        assert len(change_log) == 1

    @pytest.mark.asyncio
    async def test_new_changes_queue_behind_pending_ones(self, journal, remote, change_log, monitor):
        """Test that writes go to the log while older changes are still pending."""
        monitor.set_online(False)
        await _project(journal, "First")
        monitor.set_online(True)

        result = await journal.create_project(name="Second", description="x", color="lime")

        assert result.queued
        remote.create_entity.assert_not_called()
        assert len(change_log) == 2

    @pytest.mark.asyncio
    async def test_invalid_project_has_no_side_effects(self, journal, remote, change_log):
        """Test that validation fails before anything is queued or sent."""
        with pytest.raises(ValidationError) as exc_info:
            await journal.create_project(name="", description="x", color="blue")

        assert "Project name is required" in exc_info.value.errors
        assert len(change_log) == 0
        assert journal.projects == []
        remote.create_entity.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, journal):
        await _project(journal, "Trips")

        with pytest.raises(ValidationError):
            await journal.create_project(name="trips", description="x", color="sky")

    @pytest.mark.asyncio
    async def test_rejected_create_rolls_back(self, journal, remote):
        """Test that a refused create leaves no trace and propagates."""
        remote.create_entity.side_effect = RemoteRejectedError("HTTP 403", status_code=403)

        with pytest.raises(RemoteRejectedError):
            await journal.create_project(name="Trips", description="Travel", color="sky")

        assert journal.projects == []

    @pytest.mark.asyncio
    async def test_queue_failure_rolls_back(self, journal, change_log, monitor):
        """Test that a failed durable append undoes the optimistic insert."""
        monitor.set_online(False)

        with patch.object(change_log, "append", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                await journal.create_project(name="Trips", description="Travel", color="sky")

        assert journal.projects == []

    @pytest.mark.asyncio
    async def test_cache_updated(self, journal, cache):
        """Test that mutations are mirrored into the offline cache."""
        project_id = await _project(journal)

        projects, _ = cache.load_snapshot()

        assert [p.id for p in projects] == [project_id]


class TestUpdateProject:
    """Tests for updating and deleting projects."""

    @pytest.mark.asyncio
    async def test_update_online(self, journal, remote):
        project_id = await _project(journal)

        result = await journal.update_project(project_id, {"name": "Holidays"})

        assert result.status == MutationStatus.SUCCESS
        assert journal.get_project(project_id).name == "Holidays"
        remote.update_entity.assert_awaited_once_with(
            EntityType.PROJECT, project_id, {"name": "Holidays"}
        )

    @pytest.mark.asyncio
    async def test_rejected_update_rolls_back(self, journal, remote, change_log):
        """Test that a refused update restores the previous state and raises."""
        project_id = await _project(journal)
        remote.update_entity.side_effect = RemoteRejectedError("HTTP 403", status_code=403)

        with pytest.raises(RemoteRejectedError):
            await journal.update_project(project_id, {"name": "Holidays"})

        assert journal.get_project(project_id).name == "Trips"
        assert len(change_log) == 0

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, journal):
        project_id = await _project(journal)

        with pytest.raises(ValidationError):
            await journal.update_project(project_id, {"memory_count": 5})

    @pytest.mark.asyncio
    async def test_update_missing_project(self, journal):
        with pytest.raises(EntityNotFoundError):
            await journal.update_project("nope", {"name": "x"})

    @pytest.mark.asyncio
    async def test_toggle_project_favorite(self, journal):
        project_id = await _project(journal)

        await journal.toggle_project_favorite(project_id)

        assert journal.get_project(project_id).is_favorite is True

    @pytest.mark.asyncio
    async def test_delete_unfiles_memories(self, journal, remote):
        """Test that deleting a project keeps its memories as unfiled."""
        project_id = await _project(journal)
        memory_id = await _memory(journal, project_id)

        result = await journal.delete_project(project_id)

        assert result.status == MutationStatus.SUCCESS
        assert journal.projects == []
        assert journal.get_memory(memory_id).project_id is None
        remote.delete_entity.assert_awaited_once_with(EntityType.PROJECT, project_id)


class TestMemories:
    """Tests for memory mutations."""

    @pytest.mark.asyncio
    async def test_create_adds_auto_tags(self, journal):
        """Test that keyword tags are merged into the given ones."""
        result = await journal.create_memory(
            title="Birthday party",
            description="Cake with family",
            date="2024-03-01",
            image_urls=[IMAGE],
            tags=["mine"],
        )

        tags = result.entity.tags
        assert tags[0] == "mine"
        assert "birthday" in tags
        assert "family" in tags

    @pytest.mark.asyncio
    async def test_create_infers_location(self, journal):
        result = await journal.create_memory(
            title="Weekend", description="We stayed in Lisbon", image_urls=[IMAGE]
        )

        assert result.entity.location == "Lisbon"

    @pytest.mark.asyncio
    async def test_create_requires_image(self, journal, change_log):
        with pytest.raises(ValidationError):
            await journal.create_memory(title="Beach", description="Sunny")
        assert len(change_log) == 0

    @pytest.mark.asyncio
    async def test_create_rejects_bad_date(self, journal):
        with pytest.raises(ValidationError):
            await journal.create_memory(
                title="Beach", description="Sunny", date="01/07/2024", image_urls=[IMAGE]
            )

    @pytest.mark.asyncio
    async def test_create_with_unknown_project(self, journal):
        with pytest.raises(ValidationError):
            await _memory(journal, project_id="missing")

    @pytest.mark.asyncio
    async def test_update_regenerates_tags(self, journal):
        """Test that a new title brings its keyword tags along."""
        memory_id = await _memory(journal, title="Afternoon")

        await journal.update_memory(memory_id, {"title": "Hiking afternoon"})

        assert "hiking" in journal.get_memory(memory_id).tags

    @pytest.mark.asyncio
    async def test_toggle_favorite(self, journal, remote):
        memory_id = await _memory(journal)

        await journal.toggle_favorite(memory_id)

        assert journal.get_memory(memory_id).is_favorite is True
        remote.update_entity.assert_awaited_with(
            EntityType.MEMORY, memory_id, {"is_favorite": True}
        )

    @pytest.mark.asyncio
    async def test_delete_memory_offline(self, journal, change_log, monitor):
        memory_id = await _memory(journal)
        monitor.set_online(False)

        result = await journal.delete_memory(memory_id)

        assert result.queued
        assert journal.memories == []
        assert change_log.read_all()[-1].kind == ChangeKind.DELETE

    @pytest.mark.asyncio
    async def test_get_missing_memory(self, journal):
        with pytest.raises(EntityNotFoundError):
            journal.get_memory("nope")


class TestMemoryCount:
    """Tests for derived project memory counts."""

    @pytest.mark.asyncio
    async def test_counts_follow_mutations(self, journal):
        """Test that memory_count matches the memories after every change."""
        trips = await _project(journal, "Trips")
        family = await _project(journal, "Family")
        first = await _memory(journal, trips)
        second = await _memory(journal, trips, title="Dunes")
        assert journal.get_project(trips).memory_count == 2

        await journal.move_memory(first, family)
        assert journal.get_project(trips).memory_count == 1
        assert journal.get_project(family).memory_count == 1

        await journal.delete_memory(second)
        assert journal.get_project(trips).memory_count == 0

        await journal.move_memory(first, None)
        assert journal.get_project(family).memory_count == 0

    @pytest.mark.asyncio
    async def test_counts_restored_on_rejection(self, journal, remote):
        trips = await _project(journal)
        memory_id = await _memory(journal, trips)
        remote.delete_entity.side_effect = RemoteRejectedError("HTTP 403", status_code=403)

        with pytest.raises(RemoteRejectedError):
            await journal.delete_memory(memory_id)

        assert journal.get_project(trips).memory_count == 1

    @pytest.mark.asyncio
    async def test_project_stats(self, journal):
        trips = await _project(journal)
        await _memory(journal, trips, is_favorite=True)
        await _memory(journal, trips, title="Dunes")

        stats = journal.project_stats(trips)

        assert stats == {"memory_count": 2, "image_count": 2, "favorite_count": 1}


class TestBulk:
    """Tests for bulk operations."""

    @pytest.mark.asyncio
    async def test_bulk_toggle_reports_each_item(self, journal):
        """Test that a missing id is reported without stopping the batch."""
        first = await _memory(journal)
        second = await _memory(journal, title="Dunes")

        results = await journal.bulk_toggle_favorites([first, "missing", second])

        assert [r.status for r in results] == [
            MutationStatus.SUCCESS,
            MutationStatus.REJECTED,
            MutationStatus.SUCCESS,
        ]
        assert results[1].error
        assert all(m.is_favorite for m in journal.memories)

    @pytest.mark.asyncio
    async def test_bulk_delete(self, journal):
        ids = [await _memory(journal), await _memory(journal, title="Dunes")]

        await journal.bulk_delete_memories(ids)

        assert journal.memories == []

    @pytest.mark.asyncio
    async def test_bulk_move(self, journal):
        trips = await _project(journal)
        ids = [await _memory(journal), await _memory(journal, title="Dunes")]

        await journal.bulk_move_memories(ids, trips)

        assert journal.get_project(trips).memory_count == 2


class TestImages:
    """Tests for image uploads."""

    @staticmethod
    def _png(width=3000, height=2000):
        out = io.BytesIO()
        Image.new("RGB", (width, height), "red").save(out, format="PNG")
        return out.getvalue()

    @pytest.mark.asyncio
    async def test_add_images(self, journal, remote):
        """Test that images are optimised, uploaded and attached."""
        memory_id = await _memory(journal)
        remote.upload_file.return_value = "https://cdn.example.com/new.jpg"

        await journal.add_images(memory_id, [("photo.png", self._png())])

        path, data, content_type = remote.upload_file.await_args.args
        assert path.startswith(f"user-1/{memory_id}/")
        assert content_type == "image/jpeg"
        assert Image.open(io.BytesIO(data)).size == (1920, 1280)
        assert journal.get_memory(memory_id).image_urls == [
            IMAGE, "https://cdn.example.com/new.jpg"
        ]

    @pytest.mark.asyncio
    async def test_add_images_offline(self, journal, remote, monitor):
        memory_id = await _memory(journal)
        monitor.set_online(False)

        with pytest.raises(RemoteUnavailableError):
            await journal.add_images(memory_id, [("photo.png", self._png(10, 10))])

        remote.upload_file.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_images_rejects_type(self, journal, remote):
        memory_id = await _memory(journal)

        with pytest.raises(ValidationError):
            await journal.add_images(memory_id, [("notes.txt", b"hello")])

        remote.upload_file.assert_not_called()


class TestRefresh:
    """Tests for loading entities."""

    @pytest.mark.asyncio
    async def test_refresh_from_remote(self, journal, remote):
        """Test that remote rows replace the in-memory collections."""
        remote.list_entities.side_effect = [
            [{"id": "p1", "name": "Trips", "description": "Travel", "color": "sky"}],
            [{"id": "m1", "title": "Beach", "description": "Sunny", "date": "2024-07-01",
              "image_urls": [IMAGE], "project_id": "p1"}],
        ]

        assert await journal.refresh() is True

        assert journal.get_project("p1").memory_count == 1
        assert journal.get_memory("m1").title == "Beach"

    @pytest.mark.asyncio
    async def test_refresh_with_pending_uses_cache(self, journal, remote, monitor):
        """Test that local state is kept while changes are still queued."""
        monitor.set_online(False)
        project_id = await _project(journal)
        monitor.set_online(True)

        assert await journal.refresh() is False

        remote.list_entities.assert_not_called()
        assert journal.get_project(project_id).name == "Trips"

    @pytest.mark.asyncio
    async def test_refresh_unavailable_uses_cache(self, journal, remote, cache):
        await _project(journal)
        remote.list_entities.side_effect = RemoteUnavailableError("HTTP 503")

        assert await journal.refresh() is False
        assert len(journal.projects) == 1


class TestOverlappingCalls:
    """Tests for facade calls that interleave while one awaits the remote."""

    @pytest.fixture
    def gate(self):
        """Events for holding a remote call: entered is set once it is waiting."""
        return asyncio.Event(), asyncio.Event()

    @pytest.mark.asyncio
    async def test_rejected_update_keeps_concurrent_create(self, journal, remote, gate):
        """Test that rolling back an update does not drop a memory created meanwhile."""
        entered, release = gate
        first = await _memory(journal, title="Beach")

        async def refuse_update(entity_type, entity_id, patch):
            entered.set()
            await release.wait()
            raise RemoteRejectedError("HTTP 403", status_code=403)

        remote.update_entity.side_effect = refuse_update
        update = asyncio.create_task(journal.update_memory(first, {"title": "Harbour"}))
        await entered.wait()

        second = await _memory(journal, title="Forest")
        release.set()
        with pytest.raises(RemoteRejectedError):
            await update

        assert {m.id for m in journal.memories} == {first, second}
        assert journal.get_memory(first).title == "Beach"
        assert journal.get_memory(second).title == "Forest"

    @pytest.mark.asyncio
    async def test_rejected_delete_keeps_concurrent_count(self, journal, remote, gate):
        """Test that memory_count is right after a rollback overlapping a create."""
        entered, release = gate
        trips = await _project(journal)
        first = await _memory(journal, trips)

        async def refuse_delete(entity_type, entity_id):
            entered.set()
            await release.wait()
            raise RemoteRejectedError("HTTP 403", status_code=403)

        remote.delete_entity.side_effect = refuse_delete
        delete = asyncio.create_task(journal.delete_memory(first))
        await entered.wait()
        assert journal.get_project(trips).memory_count == 0

        second = await _memory(journal, trips, title="Dunes")
        release.set()
        with pytest.raises(RemoteRejectedError):
            await delete

        assert {m.id for m in journal.memories} == {first, second}
        assert journal.get_project(trips).memory_count == 2

    @pytest.mark.asyncio
    async def test_delete_during_inflight_project_create(self, journal, remote, gate):
        """Test that deleting a project mid-create removes the remote's row too."""
        entered, release = gate

        async def slow_create(entity_type, row):
            entered.set()
            await release.wait()
            return {**row, "id": "remote-project-9"}

        remote.create_entity.side_effect = slow_create
        create = asyncio.create_task(
            journal.create_project(name="Trips", description="Travel", color="sky")
        )
        await entered.wait()
        [pending] = journal.projects

        await journal.delete_project(pending.id)
        release.set()
        result = await create

        assert journal.projects == []
        assert result.entity is None
        assert result.entity_id == "remote-project-9"
        remote.delete_entity.assert_any_await(EntityType.PROJECT, "remote-project-9")

    @pytest.mark.asyncio
    async def test_delete_during_inflight_memory_create_offline(
        self, journal, remote, change_log, monitor, gate
    ):
        """Test that the cleanup delete is queued when the remote drops away."""
        entered, release = gate

        async def slow_create(entity_type, row):
            entered.set()
            await release.wait()
            return {**row, "id": "remote-memory-9"}

        remote.create_entity.side_effect = slow_create
        create = asyncio.create_task(
            journal.create_memory(title="Beach", description="Sunny", image_urls=[IMAGE])
        )
        await entered.wait()
        [pending] = journal.memories

        await journal.delete_memory(pending.id)
        monitor.set_online(False)
        release.set()
        result = await create

        assert journal.memories == []
        assert result.queued
        [change] = change_log.read_all()
        assert change.kind == ChangeKind.DELETE
        assert change.entity_type == EntityType.MEMORY
        assert change.entity_id == "remote-memory-9"

    @pytest.mark.asyncio
    async def test_update_finishing_after_delete(self, journal, remote, gate):
        """Test that an update finishing after a delete reports no entity."""
        entered, release = gate
        memory_id = await _memory(journal)

        async def slow_update(entity_type, entity_id, patch):
            entered.set()
            await release.wait()
            return {"id": entity_id, **patch}

        remote.update_entity.side_effect = slow_update
        update = asyncio.create_task(journal.toggle_favorite(memory_id))
        await entered.wait()

        await journal.delete_memory(memory_id)
        release.set()
        result = await update

        assert result.status == MutationStatus.SUCCESS
        assert result.entity is None
        assert journal.memories == []


class TestOfflineRoundTrip:
    """End-to-end offline create followed by reconnect."""

    @pytest.mark.asyncio
    async def test_offline_create_syncs_on_reconnect(
        self, journal, remote, change_log, monitor, cache
    ):
        """Test that a memory created offline reaches the remote once back online."""
        engine = SyncEngine(change_log, remote, monitor, cache=cache, interval_seconds=3600)
        monitor.set_online(False)
        await engine.start()
        await asyncio.sleep(0.01)  # first tick runs while offline

        result = await journal.create_memory(
            title="Picnic", description="In the park", image_urls=[IMAGE]
        )
        assert result.queued
        assert engine.status.pending_count == 1

        monitor.set_online(True)
        drain = await engine.wait_for_pending_drain()

        assert drain.applied == 1
        assert len(change_log) == 0
        assert engine.status.pending_count == 0
        entity_type, payload = remote.create_entity.await_args.args
        assert entity_type == EntityType.MEMORY
        assert payload["id"] == result.entity_id
        assert payload["title"] == "Picnic"
        await engine.stop()
        engine.close()
