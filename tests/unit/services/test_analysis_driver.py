"""
Tests for AnalysisDriver.

Tests cover:
- Happy path: all four stages run once, in order, and complete the record
- Fail-fast: a failing collaborator fails its stage and leaves later stages pending
- Per-stage timeout and unexpected exceptions
- Idempotence: a second run() for an active run or a finished session is a no-op
- Superseded runs stop writing once the record has moved on
"""

import asyncio
from datetime import timedelta

import pytest

from helpshelf.schemas.onboarding_progress import RunState, StageName, StageStatus
from helpshelf.services.analysis_driver import AnalysisDriver
from helpshelf.services.progress import state_machine

from tests.helpers.stub_collaborators import CountingCollaborators


async def _seed(store, session_id: str = "sess-1", domain: str | None = "example.com"):
    record, _ = await store.create_if_absent(
        session_id, lambda: state_machine.new_record(session_id, domain)
    )
    return record


class TestDriverSuccess:
    """Full pipeline runs."""

    @pytest.mark.asyncio
    async def test_runs_all_stages_once_and_completes(self, store, stub):
        """not_started → analyzing → complete, one call per stage."""
        record = await _seed(store)
        driver = AnalysisDriver(store)

        result = await driver.run(record, stub.as_collaborators())

        assert result.run_state == RunState.COMPLETE
        assert result.overall_percent == 100
        assert result.completed_at is not None
        assert all(stage.status == StageStatus.COMPLETED for stage in result.stages)
        assert stub.calls == {name: 1 for name in StageName}
        assert await store.load("sess-1") == result

    @pytest.mark.asyncio
    async def test_threads_stage_outputs_forward(self, store, stub):
        """AI processing sees the crawl batch; integration setup sees the summary."""
        record = await _seed(store)

        await AnalysisDriver(store).run(record, stub.as_collaborators())

        assert stub.seen_batch is not None
        assert stub.seen_batch.page_count == 1
        assert stub.seen_processed is not None
        assert stub.seen_processed.summary == "A helpful site"

    @pytest.mark.asyncio
    async def test_each_transition_is_visible_while_running(self, store):
        """Pollers see the in-progress stage while its collaborator is working."""
        gate = asyncio.Event()
        stub = CountingCollaborators(gates={StageName.AI_PROCESSING: gate})
        record = await _seed(store)
        driver = AnalysisDriver(store)

        task = asyncio.create_task(driver.run(record, stub.as_collaborators()))
        await stub.entered[StageName.AI_PROCESSING].wait()

        snapshot = await store.load("sess-1")
        assert snapshot.run_state == RunState.ANALYZING
        assert [s.status for s in snapshot.stages] == [
            StageStatus.COMPLETED,
            StageStatus.COMPLETED,
            StageStatus.IN_PROGRESS,
            StageStatus.PENDING,
        ]
        assert snapshot.overall_percent == 50
        assert driver.is_active("sess-1")

        gate.set()
        result = await task
        assert result.run_state == RunState.COMPLETE
        assert not driver.is_active("sess-1")


class TestDriverFailures:
    """Fail-fast behaviour for collaborator errors."""

    @pytest.mark.asyncio
    async def test_crawl_failure_fails_stage_and_stops(self, store):
        """A crawl error fails content_crawling; later stages never start."""
        stub = CountingCollaborators(fail_at=StageName.CONTENT_CRAWLING)
        record = await _seed(store)

        result = await AnalysisDriver(store).run(record, stub.as_collaborators())

        assert result.run_state == RunState.FAILED
        assert result.error_message == "content_crawling error"
        assert [s.status for s in result.stages] == [
            StageStatus.COMPLETED,
            StageStatus.FAILED,
            StageStatus.PENDING,
            StageStatus.PENDING,
        ]
        assert stub.calls[StageName.AI_PROCESSING] == 0
        assert stub.calls[StageName.INTEGRATION_SETUP] == 0
        assert result.is_analyzing is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_stage_failure(self, store):
        """Non-collaborator exceptions are recorded, not raised."""
        stub = CountingCollaborators(
            fail_at=StageName.DOMAIN_VALIDATION, error=RuntimeError("socket closed")
        )
        record = await _seed(store)

        result = await AnalysisDriver(store).run(record, stub.as_collaborators())

        assert result.run_state == RunState.FAILED
        assert result.error_message == "socket closed"
        assert result.stages[0].status == StageStatus.FAILED

    @pytest.mark.asyncio
    async def test_stage_timeout_fails_stage(self, store):
        """A collaborator that never returns is cut off by the stage timeout."""
        stub = CountingCollaborators(gates={StageName.CONTENT_CRAWLING: asyncio.Event()})
        record = await _seed(store)

        result = await AnalysisDriver(store, stage_timeout_seconds=0.05).run(
            record, stub.as_collaborators()
        )

        assert result.run_state == RunState.FAILED
        assert result.error_message == "Content crawling timed out after 0.05s"
        assert result.stages[1].status == StageStatus.FAILED
        assert stub.calls[StageName.AI_PROCESSING] == 0

    @pytest.mark.asyncio
    async def test_zero_stage_timeout_is_honored(self, store):
        """An explicit timeout of 0 is not replaced by the configured default."""
        stub = CountingCollaborators(gates={StageName.DOMAIN_VALIDATION: asyncio.Event()})
        record = await _seed(store)
        driver = AnalysisDriver(store, stage_timeout_seconds=0)
        assert driver.stage_timeout_seconds == 0

        result = await asyncio.wait_for(driver.run(record, stub.as_collaborators()), timeout=5)

        assert result.run_state == RunState.FAILED
        assert result.error_message == "Domain validation timed out after 0s"

    @pytest.mark.asyncio
    async def test_missing_domain_fails_first_stage(self, store, stub):
        """A record without a domain fails validation without calling out."""
        record = await _seed(store, domain=None)

        result = await AnalysisDriver(store).run(record, stub.as_collaborators())

        assert result.run_state == RunState.FAILED
        assert result.error_message == "No domain was provided for analysis"
        assert stub.total_calls == 0


class TestDriverIdempotence:
    """run() is a no-op when there is nothing to drive."""

    @pytest.mark.asyncio
    async def test_second_run_while_active_is_noop(self, store):
        gate = asyncio.Event()
        stub = CountingCollaborators(gates={StageName.DOMAIN_VALIDATION: gate})
        await _seed(store)
        begun = await store.update("sess-1", state_machine.begin_run)
        driver = AnalysisDriver(store)

        first = asyncio.create_task(driver.run(begun, stub.as_collaborators()))
        await stub.entered[StageName.DOMAIN_VALIDATION].wait()

        second = await driver.run(begun, stub.as_collaborators())
        assert second is begun
        assert driver.is_active("sess-1")

        gate.set()
        result = await first
        assert result.run_state == RunState.COMPLETE
        assert stub.calls == {name: 1 for name in StageName}
        assert not driver.is_active("sess-1")

    @pytest.mark.asyncio
    async def test_concurrent_runs_from_not_started_drive_once(self, store):
        """The caller that loses the begin race reports the winner's run."""
        gate = asyncio.Event()
        stub = CountingCollaborators(gates={StageName.DOMAIN_VALIDATION: gate})
        record = await _seed(store)
        driver = AnalysisDriver(store)

        first = asyncio.create_task(driver.run(record, stub.as_collaborators()))
        await stub.entered[StageName.DOMAIN_VALIDATION].wait()

        second = await driver.run(record, stub.as_collaborators())
        assert second.run_state == RunState.ANALYZING

        gate.set()
        result = await first
        assert second.run_id == result.run_id
        assert result.run_state == RunState.COMPLETE
        assert stub.calls == {name: 1 for name in StageName}

    @pytest.mark.asyncio
    async def test_new_run_is_driven_while_old_run_unwinds(self, store):
        """A restarted session gets a fresh run even if the old one is still executing."""
        old_gate = asyncio.Event()
        old_stub = CountingCollaborators(gates={StageName.DOMAIN_VALIDATION: old_gate})
        new_stub = CountingCollaborators()
        await _seed(store)
        old_run = await store.update("sess-1", state_machine.begin_run)
        driver = AnalysisDriver(store)

        old_task = asyncio.create_task(driver.run(old_run, old_stub.as_collaborators()))
        await old_stub.entered[StageName.DOMAIN_VALIDATION].wait()

        await store.update("sess-1", lambda r: state_machine.fail_run(r, "stuck"))
        await store.update("sess-1", state_machine.reset_for_restart)
        new_run = await store.update("sess-1", state_machine.begin_run)

        result = await driver.run(new_run, new_stub.as_collaborators())

        assert result.run_state == RunState.COMPLETE
        assert result.run_id == new_run.run_id
        assert new_stub.calls == {name: 1 for name in StageName}

        old_gate.set()
        await old_task
        stored = await store.load("sess-1")
        assert stored.run_state == RunState.COMPLETE
        assert stored.run_id == new_run.run_id
        assert old_stub.calls[StageName.CONTENT_CRAWLING] == 0

    @pytest.mark.asyncio
    async def test_run_on_finished_record_is_noop(self, store, stub):
        record = await _seed(store)
        driver = AnalysisDriver(store)
        finished = await driver.run(record, stub.as_collaborators())

        again = await driver.run(finished, stub.as_collaborators())

        assert again is finished
        assert stub.calls == {name: 1 for name in StageName}

    @pytest.mark.asyncio
    async def test_begun_record_is_driven(self, store, stub):
        """A record begun by the caller (stages still pending) is executed."""
        await _seed(store)
        begun = await store.update("sess-1", state_machine.begin_run)

        result = await AnalysisDriver(store).run(begun, stub.as_collaborators())

        assert result.run_state == RunState.COMPLETE
        assert result.run_id == begun.run_id

    @pytest.mark.asyncio
    async def test_orphaned_record_is_not_redriven(self, store, stub):
        """An analyzing record with stage progress belongs to another driver."""
        await _seed(store)
        begun = await store.update("sess-1", state_machine.begin_run)
        orphan = await store.update(
            "sess-1",
            lambda r: state_machine.record_stage_transition(r, 0, StageStatus.IN_PROGRESS, 0),
        )

        result = await AnalysisDriver(store).run(orphan, stub.as_collaborators())

        assert result is orphan
        assert stub.total_calls == 0
        assert begun.run_id == orphan.run_id


class TestSupersededRun:
    """A driver whose run was taken over stops writing."""

    @pytest.mark.asyncio
    async def test_stalled_run_does_not_overwrite_failure(self, store):
        gate = asyncio.Event()
        stub = CountingCollaborators(gates={StageName.CONTENT_CRAWLING: gate})
        record = await _seed(store)
        driver = AnalysisDriver(store)

        task = asyncio.create_task(driver.run(record, stub.as_collaborators()))
        await stub.entered[StageName.CONTENT_CRAWLING].wait()

        # Supervisor marks the run stalled while crawl is still blocked
        current = await store.load("sess-1")
        stalled = await store.update(
            "sess-1",
            lambda r: state_machine.mark_stalled(r, now=current.updated_at + timedelta(minutes=11)),
        )
        assert stalled.run_state == RunState.FAILED

        gate.set()
        result = await task

        assert result.run_state == RunState.FAILED
        assert result.stages[1].status == StageStatus.FAILED
        assert "timed out after 11 minutes" in result.error_message
        assert stub.calls[StageName.AI_PROCESSING] == 0
        assert await store.load("sess-1") == stalled
