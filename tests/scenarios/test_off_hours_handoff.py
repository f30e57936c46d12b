from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from agents.intent_classifier import ClassifierError, IntentClassifier
from conftest import build_orchestrator
from models.schemas import ConversationStatus, IntentType
from tasks.offhours_sweep import PROMOTION_NOTICE, OffHoursSweeper

# Wednesday 2025-03-19 09:01 Asia/Taipei
NEXT_MORNING = datetime(2025, 3, 19, 1, 1, tzinfo=timezone.utc)


def test_off_hours_request_waits_for_the_morning_sweep(off_hours_clock):
    async def _run():
        orchestrator = build_orchestrator(off_hours_clock)
        sweeper = OffHoursSweeper(
            scheduler=orchestrator.scheduler,
            session_store=orchestrator.session_store,
            clock=off_hours_clock,
        )

        first = await orchestrator.handle_message("我想找真人", "night-1", user_id="u1")
        assert first.intent == IntentType.TRANSFER_AGENT
        assert first.requires_human
        assert first.handoff.off_hours
        assert "您的訊息已記錄" in first.reply
        assert await orchestrator.scheduler.get_queue_snapshot() == []

        off_hours_clock.advance(minutes=5)
        second = await orchestrator.handle_message("找真人", "night-1")
        assert second.requires_human
        assert "您的訊息已記錄" not in second.reply

        record = await orchestrator.scheduler.get_conversation("night-1")
        assert record.status == ConversationStatus.BOT
        assert record.off_hours_pending

        off_hours_clock.now = NEXT_MORNING
        report = await sweeper.trigger_sweep()
        assert report.processed == 1
        queue = await orchestrator.scheduler.get_queue_snapshot("taipei")
        assert [item.conversation_id for item in queue] == ["night-1"]
        history = await orchestrator.get_history("night-1")
        assert history[-1].role == "assistant"
        assert history[-1].text == PROMOTION_NOTICE

    asyncio.run(_run())


class UnavailableClassifier(IntentClassifier):
    provider = "unavailable"

    async def classify(self, message, history=()):
        raise ClassifierError("provider down")


def test_failed_classifier_off_hours_never_queues_directly(off_hours_clock):
    async def _run():
        orchestrator = build_orchestrator(off_hours_clock, classifier=UnavailableClassifier())
        result = await orchestrator.handle_message("qwerty", "night-2")
        assert result.intent == IntentType.UNKNOWN
        assert result.requires_human
        assert result.handoff.status == ConversationStatus.BOT
        assert result.handoff.off_hours
        assert await orchestrator.scheduler.get_queue_snapshot() == []

    asyncio.run(_run())
