from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from agents.escalation_agent import HumanHandoffScheduler
from compliance.audit_logger import AuditLogger
from conftest import FixedClock
from memory.customer_profile import CustomerProfileRepository
from memory.session_memory import InMemorySessionStore, JsonFileSessionStore
from models.schemas import ConversationStatus, CustomerProfile, HandoffReason
from tasks import offhours_sweep
from tasks.offhours_sweep import (
    PROMOTION_NOTICE,
    OffHoursSweeper,
    SweepLoop,
    celery_app,
    promote_off_hours_conversations,
    purge_expired_sessions,
    validate_sweep_interval,
)
from tools.handoff_tools import HandoffQueue
from tools.working_hours_tools import WorkingHoursService

# Tuesday 2025-03-18 22:00 Asia/Taipei
TUESDAY_NIGHT = datetime(2025, 3, 18, 14, 0, tzinfo=timezone.utc)
# Wednesday 2025-03-19 09:02 Asia/Taipei
WEDNESDAY_OPENING = datetime(2025, 3, 19, 1, 2, tzinfo=timezone.utc)
# Saturday 2025-03-22 10:00 Asia/Taipei
SATURDAY_MORNING = datetime(2025, 3, 22, 2, 0, tzinfo=timezone.utc)


def _build(clock, profiles=None):
    store = InMemorySessionStore(clock=clock)
    scheduler = HumanHandoffScheduler(
        queue=HandoffQueue(path=""),
        working_hours=WorkingHoursService(clock=clock),
        profiles=profiles or CustomerProfileRepository(path=""),
        session_store=store,
        audit_logger=AuditLogger(path=""),
        clock=clock,
    )
    return scheduler, store, OffHoursSweeper(scheduler=scheduler, session_store=store, clock=clock)


def test_promotes_at_work_start_with_vip_priority():
    async def _run():
        clock = FixedClock(TUESDAY_NIGHT)
        profiles = CustomerProfileRepository(path="")
        await profiles.upsert_profile(CustomerProfile(customer_id="vip", vip_level=2))
        scheduler, store, sweeper = _build(clock, profiles)
        await store.get_or_create("c1", customer_id="vip")
        await scheduler.request_handoff("c1", customer_id="vip", reason=HandoffReason.USER_REQUEST)

        clock.advance(hours=2)
        report = await sweeper.trigger_sweep()
        assert (report.processed, report.skipped, report.total) == (0, 1, 1)

        clock.now = WEDNESDAY_OPENING
        report = await sweeper.trigger_sweep()
        assert report.processed == 1
        record = await scheduler.get_conversation("c1")
        assert record.status == ConversationStatus.WAITING
        assert record.priority == 4
        assert record.handoff_at == WEDNESDAY_OPENING
        assert not record.off_hours_pending
        history = await store.get_history("c1")
        assert history[-1].text == PROMOTION_NOTICE

        again = await sweeper.trigger_sweep()
        assert again.total == 0

    asyncio.run(_run())


def test_items_older_than_a_day_are_promoted_any_time():
    async def _run():
        clock = FixedClock(SATURDAY_MORNING)
        scheduler, _, sweeper = _build(clock)
        await scheduler.request_handoff("c1")
        clock.advance(hours=23, minutes=59)
        assert (await sweeper.run_once()).processed == 0
        clock.advance(minutes=1)
        assert (await sweeper.run_once()).processed == 1
        assert (await scheduler.get_conversation("c1")).status == ConversationStatus.WAITING

    asyncio.run(_run())


def test_failing_item_does_not_stop_the_sweep():
    async def _run():
        clock = FixedClock(TUESDAY_NIGHT)
        scheduler, store, sweeper = _build(clock)
        await scheduler.request_handoff("bad")
        await scheduler.request_handoff("good")
        original = store.append_history

        async def flaky_append(conversation_id, role, text):
            if conversation_id == "bad":
                raise OSError("store unavailable")
            return await original(conversation_id, role, text)

        store.append_history = flaky_append
        clock.now = WEDNESDAY_OPENING
        report = await sweeper.run_once()
        assert report.failed == 1
        assert report.processed == 1

        bad = await scheduler.get_conversation("bad")
        assert bad.status == ConversationStatus.BOT
        assert bad.off_hours_pending
        assert bad.notices == []
        assert (await scheduler.get_conversation("good")).status == ConversationStatus.WAITING

        store.append_history = original
        retry = await sweeper.run_once()
        assert (retry.total, retry.processed) == (1, 1)
        assert (await scheduler.get_conversation("bad")).status == ConversationStatus.WAITING
        assert (await store.get_history("bad"))[-1].text == PROMOTION_NOTICE

    asyncio.run(_run())


def test_slow_item_times_out():
    async def _run():
        clock = FixedClock(TUESDAY_NIGHT)
        scheduler, store, _ = _build(clock)
        sweeper = OffHoursSweeper(scheduler=scheduler, session_store=store, clock=clock, item_timeout_seconds=0.01)
        await scheduler.request_handoff("c1")

        async def slow_append(conversation_id, role, text):
            await asyncio.sleep(1)

        store.append_history = slow_append
        clock.now = WEDNESDAY_OPENING
        report = await sweeper.run_once()
        assert report.failed == 1
        record = await scheduler.get_conversation("c1")
        assert record.status == ConversationStatus.BOT
        assert record.off_hours_pending
        assert len(await sweeper.scheduler.queue.pending_off_hours()) == 1

    asyncio.run(_run())


def test_sweep_interval_must_fit_promotion_window():
    assert validate_sweep_interval(60) == 60
    assert validate_sweep_interval(300) == 300
    with pytest.raises(ValueError):
        validate_sweep_interval(301)
    with pytest.raises(ValueError):
        SweepLoop(sweeper=None, interval_seconds=0)


def test_beat_schedule_registers_periodic_jobs():
    schedule = celery_app.conf.beat_schedule
    assert set(schedule) == {"promote-off-hours-conversations", "purge-expired-sessions", "cleanup-closed-conversations"}
    assert schedule["purge-expired-sessions"]["schedule"] == 600.0
    assert schedule["cleanup-closed-conversations"]["schedule"] == 3600.0


def test_sweep_loop_runs_and_stops():
    async def _run():
        clock = FixedClock(WEDNESDAY_OPENING - timedelta(hours=11))
        scheduler, _, sweeper = _build(clock)
        await scheduler.request_handoff("c1")
        clock.now = WEDNESDAY_OPENING
        loop = SweepLoop(sweeper, interval_seconds=60)
        loop.start()
        assert loop.running
        for _ in range(50):
            if (await scheduler.get_conversation("c1")).status == ConversationStatus.WAITING:
                break
            await asyncio.sleep(0.01)
        await loop.stop()
        assert not loop.running
        assert (await scheduler.get_conversation("c1")).status == ConversationStatus.WAITING

    asyncio.run(_run())


def test_celery_tasks_refuse_in_memory_stores(monkeypatch):
    monkeypatch.setattr(offhours_sweep, "SETTINGS", dataclasses.replace(offhours_sweep.SETTINGS, session_store_durable=False))
    with pytest.raises(RuntimeError):
        promote_off_hours_conversations()
    with pytest.raises(RuntimeError):
        purge_expired_sessions()


def test_celery_promotion_is_visible_to_the_api_process(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    session_path = str(tmp_path / "sessions.json")
    queue_path = str(tmp_path / "queue.json")
    monkeypatch.setattr(
        offhours_sweep,
        "SETTINGS",
        dataclasses.replace(
            offhours_sweep.SETTINGS,
            session_store_durable=True,
            session_store_path=session_path,
            handoff_queue_path=queue_path,
        ),
    )

    async def _park():
        clock = FixedClock(TUESDAY_NIGHT)
        store = JsonFileSessionStore(path=session_path, clock=clock)
        scheduler = HumanHandoffScheduler(
            queue=HandoffQueue(path=queue_path),
            working_hours=WorkingHoursService(clock=clock),
            profiles=CustomerProfileRepository(path=""),
            session_store=store,
            audit_logger=AuditLogger(path=""),
            clock=clock,
        )
        await store.get_or_create("c1")
        outcome = await scheduler.request_handoff("c1")
        assert outcome.off_hours
        return scheduler, store

    scheduler, store = asyncio.run(_park())
    # parked well over a day ago, so the worker promotes it at any time of day
    result = promote_off_hours_conversations()
    assert result["processed"] == 1

    async def _check():
        record = await scheduler.get_conversation("c1")
        assert record.status == ConversationStatus.WAITING
        assert (await store.get_history("c1"))[-1].text == PROMOTION_NOTICE
        await scheduler.request_handoff("c2")
        assert (await HandoffQueue(path=queue_path).get("c1")).status == ConversationStatus.WAITING

    asyncio.run(_check())
