from __future__ import annotations

import asyncio

import pytest

from conftest import build_orchestrator
from models.schemas import IntentType, SlotType

ALL_DETAILS = "我想訂 3/26 去東京的機票，2位"


@pytest.mark.parametrize("reply", ["好", "好的", "OK", "沒問題", "對的", "確認無誤", "yes"])
def test_any_confirmation_phrase_concludes_the_booking(clock, reply):
    async def _run():
        orchestrator = build_orchestrator(clock)
        summary = await orchestrator.handle_message(ALL_DETAILS, "conf-1")
        assert summary.awaiting_info == [SlotType.CONFIRMATION]
        clock.advance(seconds=30)
        final = await orchestrator.handle_message(reply, "conf-1")
        assert final.intent == IntentType.TICKET_BOOK
        assert final.requires_human
        assert final.conversation_complete
        assert "已確認" in final.reply

    asyncio.run(_run())


def test_correction_instead_of_confirmation_shows_new_summary(clock):
    async def _run():
        orchestrator = build_orchestrator(clock)
        await orchestrator.handle_message(ALL_DETAILS, "conf-2")
        clock.advance(seconds=30)
        corrected = await orchestrator.handle_message("不要，改成3/27", "conf-2")
        assert corrected.is_continuation
        assert corrected.intent == IntentType.TICKET_BOOK
        assert corrected.entities["date"] == "2025/03/27"
        assert corrected.awaiting_info == [SlotType.CONFIRMATION]
        assert not corrected.requires_human

    asyncio.run(_run())


def test_confirmation_after_window_is_not_a_continuation(clock):
    async def _run():
        orchestrator = build_orchestrator(clock)
        await orchestrator.handle_message(ALL_DETAILS, "conf-3")
        clock.advance(minutes=6)
        late = await orchestrator.handle_message("好的", "conf-3")
        assert not late.is_continuation
        assert late.intent == IntentType.GREETING
        assert not late.requires_human
        assert (await orchestrator.get_session("conf-3")).dialogue_state is None

    asyncio.run(_run())
