"""Tests for ProgressStore (locked read-modify-write over a repository)."""

import asyncio
import gc

import pytest

from helpshelf.schemas.onboarding_progress import StageStatus
from helpshelf.services.progress import state_machine
from helpshelf.services.progress.exceptions import SessionNotFound, SupersededRun


async def _seed(store, session_id: str = "sess-1"):
    record, _ = await store.create_if_absent(
        session_id, lambda: state_machine.new_record(session_id, "example.com")
    )
    return record


class TestCreateIfAbsent:
    @pytest.mark.asyncio
    async def test_creates_once(self, store):
        first, created = await store.create_if_absent("s", lambda: state_machine.new_record("s"))
        second, created_again = await store.create_if_absent("s", lambda: state_machine.new_record("s"))

        assert created is True
        assert created_again is False
        assert second is first

    @pytest.mark.asyncio
    async def test_concurrent_creates_use_one_record(self, store):
        results = await asyncio.gather(
            *[store.create_if_absent("s", lambda: state_machine.new_record("s")) for _ in range(5)]
        )
        assert sum(1 for _, created in results if created) == 1
        assert len({id(record) for record, _ in results}) == 1


class TestUpdate:
    @pytest.mark.asyncio
    async def test_persists_mutation(self, store):
        await _seed(store)
        updated = await store.update("sess-1", state_machine.begin_run)
        assert await store.load("sess-1") is updated
        assert updated.is_analyzing is True

    @pytest.mark.asyncio
    async def test_unchanged_record_is_not_rewritten(self, store, repository):
        record = await _seed(store)
        saves = []
        original_save = repository.save

        async def counting_save(r):
            saves.append(r)
            await original_save(r)

        repository.save = counting_save
        result = await store.update("sess-1", lambda current: current)

        assert result is record
        assert saves == []

    @pytest.mark.asyncio
    async def test_missing_session_raises(self, store):
        with pytest.raises(SessionNotFound):
            await store.update("nope", lambda r: r)

    @pytest.mark.asyncio
    async def test_mutation_error_leaves_record_untouched(self, store):
        record = await _seed(store)

        def explode(_):
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await store.update("sess-1", explode)
        assert await store.load("sess-1") is record

    @pytest.mark.asyncio
    async def test_write_from_old_run_is_rejected(self, store):
        await _seed(store)
        begun = await store.update("sess-1", state_machine.begin_run)
        await store.update("sess-1", lambda r: state_machine.fail_run(r, "stalled"))

        with pytest.raises(SupersededRun):
            await store.update(
                "sess-1",
                lambda r: state_machine.record_stage_transition(r, 0, StageStatus.IN_PROGRESS, 0),
                run_id=begun.run_id,
            )

    @pytest.mark.asyncio
    async def test_write_with_foreign_run_id_is_rejected(self, store):
        await _seed(store)
        await store.update("sess-1", state_machine.begin_run)

        with pytest.raises(SupersededRun):
            await store.update("sess-1", lambda r: r, run_id="someone-else")

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self, store):
        """Each mutation sees the previous one's result."""
        await _seed(store)
        await store.update("sess-1", state_machine.begin_run)
        await store.update(
            "sess-1",
            lambda r: state_machine.record_stage_transition(r, 0, StageStatus.IN_PROGRESS, 0),
        )

        async def bump(value: int):
            def mutate(r):
                if r.stages[0].sub_progress >= value:
                    return r
                return state_machine.record_stage_transition(r, 0, StageStatus.IN_PROGRESS, value)

            await store.update("sess-1", mutate)

        await asyncio.gather(*[bump(v) for v in (10, 30, 20, 50, 40)])
        assert (await store.load("sess-1")).stages[0].sub_progress == 50


class TestDelete:
    @pytest.mark.asyncio
    async def test_deletes_record(self, store):
        await _seed(store)
        assert await store.delete("sess-1") is True
        assert await store.load("sess-1") is None

    @pytest.mark.asyncio
    async def test_missing_record(self, store):
        assert await store.delete("nope") is False

    @pytest.mark.asyncio
    async def test_guard_can_veto(self, store):
        await _seed(store)

        def guard(_):
            raise RuntimeError("keep it")

        with pytest.raises(RuntimeError):
            await store.delete("sess-1", guard)
        assert await store.load("sess-1") is not None

    @pytest.mark.asyncio
    async def test_update_queued_behind_delete_sees_missing_record(self, store):
        """Writers waiting on a delete keep sharing one lock with later callers."""
        await _seed(store)
        lock = store.lock_for("sess-1")
        await lock.acquire()

        deleting = asyncio.create_task(store.delete("sess-1"))
        updating = asyncio.create_task(store.update("sess-1", state_machine.begin_run))
        await asyncio.sleep(0)
        lock.release()

        deleted, updated = await asyncio.gather(deleting, updating, return_exceptions=True)

        assert deleted is True
        assert isinstance(updated, SessionNotFound)
        assert store.lock_for("sess-1") is lock


class TestLockLifetime:
    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self, store):
        for i in range(50):
            session_id = f"sess-{i}"
            await _seed(store, session_id)
            await store.update(session_id, state_machine.begin_run)
            if i % 2:
                await store.update(session_id, lambda r: state_machine.fail_run(r, "boom"))
                await store.delete(session_id)

        gc.collect()
        assert len(store._locks) == 0


class TestListing:
    @pytest.mark.asyncio
    async def test_list_analyzing(self, store):
        await _seed(store, "idle")
        await _seed(store, "busy")
        await store.update("busy", state_machine.begin_run)

        analyzing = await store.list_analyzing()
        assert [r.session_id for r in analyzing] == ["busy"]
