from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from celery import Celery

from agents.escalation_agent import HumanHandoffScheduler
from memory.session_memory import JsonFileSessionStore, SessionStore, build_session_store
from models.schemas import ConversationRecord, SweepReport, utcnow
from settings import SETTINGS
from tools.handoff_tools import HandoffQueue
from tools.working_hours_tools import WorkingHoursService

logger = logging.getLogger(__name__)

PROMOTION_NOTICE = "工作時間已開始，您的問題已加入客服佇列，請稍候。"
MAX_SWEEP_INTERVAL_SECONDS = SETTINGS.promotion_window_minutes * 60


def validate_sweep_interval(interval_seconds: int) -> int:
    """The sweep must fire at least once inside every work-start window."""
    if interval_seconds <= 0 or interval_seconds > MAX_SWEEP_INTERVAL_SECONDS:
        raise ValueError(
            f"sweep interval must be between 1 and {MAX_SWEEP_INTERVAL_SECONDS} seconds, got {interval_seconds}"
        )
    return interval_seconds


celery_app = Celery("travel_desk_agent_platform")
if SETTINGS.redis_url:
    celery_app.conf.broker_url = SETTINGS.redis_url
    celery_app.conf.result_backend = SETTINGS.redis_url
celery_app.conf.beat_schedule = {
    "promote-off-hours-conversations": {
        "task": "tasks.offhours_sweep.promote_off_hours_conversations",
        "schedule": float(validate_sweep_interval(SETTINGS.sweep_interval_seconds)),
    },
    "purge-expired-sessions": {
        "task": "tasks.offhours_sweep.purge_expired_sessions",
        "schedule": 600.0,
    },
    "cleanup-closed-conversations": {
        "task": "tasks.offhours_sweep.cleanup_closed_conversations",
        "schedule": 3600.0,
    },
}


class OffHoursSweeper:
    """Promotes conversations parked outside working hours into the agent queue."""

    def __init__(
        self,
        scheduler: HumanHandoffScheduler | None = None,
        session_store: SessionStore | None = None,
        working_hours: WorkingHoursService | None = None,
        clock: Callable[[], datetime] | None = None,
        item_timeout_seconds: float | None = None,
        forced_promotion_hours: int | None = None,
    ) -> None:
        self.clock = clock or utcnow
        self.scheduler = scheduler or HumanHandoffScheduler(clock=self.clock)
        self.session_store = session_store or self.scheduler.session_store or build_session_store(clock=self.clock)
        self.working_hours = working_hours or self.scheduler.working_hours
        self.item_timeout_seconds = item_timeout_seconds or SETTINGS.sweep_item_timeout_seconds
        self.forced_promotion_hours = (
            forced_promotion_hours if forced_promotion_hours is not None else SETTINGS.forced_promotion_hours
        )
        self._running = asyncio.Lock()

    def due(self, record: ConversationRecord, now: datetime) -> bool:
        if self.working_hours.is_work_start_window(record.region_id, now):
            return True
        if record.off_hours_marked_at is None:
            return True
        return now - record.off_hours_marked_at >= timedelta(hours=self.forced_promotion_hours)

    async def _promote(self, record: ConversationRecord, now: datetime) -> None:
        priority = await self.scheduler.priority_for_customer(record.customer_id)
        promoted = await self.scheduler.queue.promote(record.conversation_id, priority, PROMOTION_NOTICE, now=now)
        try:
            await self.session_store.append_history(record.conversation_id, "assistant", PROMOTION_NOTICE)
        except BaseException:
            # includes cancellation by the item timeout; the record stays pending for the next sweep
            await self.scheduler.queue.restore(record)
            raise
        self.scheduler.build_decision_log(
            session_id=record.conversation_id,
            action="off_hours_promoted",
            reasoning=f"priority={promoted.priority} region={promoted.region_id}",
        )

    async def run_once(self, now: datetime | None = None) -> SweepReport:
        now = now or self.clock()
        pending = await self.scheduler.queue.pending_off_hours()
        report = SweepReport(total=len(pending), ran_at=now)
        for record in pending:
            try:
                if not self.due(record, now):
                    report.skipped += 1
                    continue
                await asyncio.wait_for(self._promote(record, now), timeout=self.item_timeout_seconds)
                report.processed += 1
            except Exception:
                logger.exception("off_hours_sweep_item_failed", extra={"conversation_id": record.conversation_id})
                report.failed += 1
        logger.info(
            "off_hours_sweep_completed",
            extra={"processed": report.processed, "skipped": report.skipped, "failed": report.failed, "total": report.total},
        )
        return report

    async def trigger_sweep(self) -> SweepReport:
        # promoted records leave the pending set, so serialized reruns are no-ops
        async with self._running:
            return await self.run_once()


class SweepLoop:
    """Runs the sweep on an interval inside the API process."""

    def __init__(self, sweeper: OffHoursSweeper, interval_seconds: int | None = None) -> None:
        self.sweeper = sweeper
        self.interval_seconds = validate_sweep_interval(
            interval_seconds if interval_seconds is not None else SETTINGS.sweep_interval_seconds
        )
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await self.sweeper.trigger_sweep()
            except Exception:
                logger.exception("off_hours_sweep_failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("sweep_loop_started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("sweep_loop_stopped")


def _durable_backends() -> tuple[JsonFileSessionStore, HumanHandoffScheduler]:
    """Stores shared with the API process through their files.

    The worker runs in its own process, so in-memory stores would hold nothing
    the API wrote and the API would never see the worker's changes.
    """
    if not SETTINGS.session_store_durable:
        raise RuntimeError("celery maintenance tasks require SESSION_STORE_DURABLE=true; use INPROCESS_SWEEP otherwise")
    if not SETTINGS.session_store_path or not SETTINGS.handoff_queue_path:
        raise RuntimeError("celery maintenance tasks require SESSION_STORE_PATH and HANDOFF_QUEUE_PATH")
    session_store = JsonFileSessionStore(path=SETTINGS.session_store_path)
    scheduler = HumanHandoffScheduler(queue=HandoffQueue(path=SETTINGS.handoff_queue_path), session_store=session_store)
    return session_store, scheduler


@celery_app.task(name="tasks.offhours_sweep.promote_off_hours_conversations")
def promote_off_hours_conversations() -> dict:
    session_store, scheduler = _durable_backends()
    sweeper = OffHoursSweeper(scheduler=scheduler, session_store=session_store)
    report = asyncio.run(sweeper.trigger_sweep())
    return report.model_dump(mode="json")


@celery_app.task(name="tasks.offhours_sweep.purge_expired_sessions")
def purge_expired_sessions() -> dict:
    session_store, _ = _durable_backends()
    return {"purged": asyncio.run(session_store.purge_expired())}


@celery_app.task(name="tasks.offhours_sweep.cleanup_closed_conversations")
def cleanup_closed_conversations() -> dict:
    _, scheduler = _durable_backends()
    return {"removed": asyncio.run(scheduler.queue.cleanup_closed())}
