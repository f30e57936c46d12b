from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone

from conftest import FixedClock
from memory.session_memory import InMemorySessionStore, JsonFileSessionStore, build_session_store
from models.schemas import DialogueState, HistoryTurn, IntentType, SlotType

START = datetime(2025, 3, 18, 2, 0, tzinfo=timezone.utc)


def test_get_or_create_returns_copies():
    async def _run():
        store = InMemorySessionStore(clock=FixedClock(START))
        state = await store.get_or_create("c1", customer_id="u1", region_id="taipei")
        state.entities["destination"] = "東京"
        again = await store.get("c1")
        assert again.customer_id == "u1"
        assert again.entities == {}

    asyncio.run(_run())


def test_history_is_trimmed_to_limit():
    async def _run():
        store = InMemorySessionStore(history_limit=4, clock=FixedClock(START))
        for i in range(6):
            await store.append_history("c1", "user", f"m{i}")
        history = await store.get_history("c1")
        assert [t.text for t in history] == ["m2", "m3", "m4", "m5"]

        state = await store.get("c1")
        state.history.extend(HistoryTurn(role="assistant", text=f"a{i}") for i in range(3))
        saved = await store.save(state)
        assert len(saved.history) == 4
        assert saved.history[-1].text == "a2"

    asyncio.run(_run())


def test_sessions_expire_after_ttl():
    async def _run():
        clock = FixedClock(START)
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        await store.get_or_create("c1")
        await store.get_or_create("c2")
        clock.advance(seconds=30)
        await store.append_history("c2", "user", "still here")
        clock.advance(seconds=45)
        assert await store.get("c1") is None
        assert await store.purge_expired() == 0
        clock.advance(seconds=60)
        assert await store.purge_expired() == 1
        assert store.conversation_ids() == []

    asyncio.run(_run())


def test_clear_dialogue_state_and_delete():
    async def _run():
        store = InMemorySessionStore(clock=FixedClock(START))
        state = await store.get_or_create("c1")
        state.dialogue_state = DialogueState(current_intent=IntentType.TICKET_BOOK, awaiting_slots={SlotType.DATE})
        await store.save(state)
        await store.clear_dialogue_state("c1")
        assert (await store.get("c1")).dialogue_state is None
        assert await store.delete("c1") is True
        assert await store.delete("c1") is False

    asyncio.run(_run())


def test_json_store_survives_restart(tmp_path):
    async def _run():
        path = str(tmp_path / "sessions.json")
        clock = FixedClock(START)
        store = JsonFileSessionStore(path=path, clock=clock)
        state = await store.get_or_create("c1", customer_id="u1")
        state.entities["booking_ref"] = "AB12CD"
        state.dialogue_state = DialogueState(
            current_intent=IntentType.TICKET_CHANGE,
            awaiting_slots={SlotType.DATE},
            last_asked_at=START - timedelta(minutes=1),
        )
        await store.save(state)

        reloaded = JsonFileSessionStore(path=path, clock=clock)
        restored = await reloaded.get("c1")
        assert restored.entities["booking_ref"] == "AB12CD"
        assert restored.dialogue_state.awaiting_slots == {SlotType.DATE}
        assert restored.dialogue_state.last_asked_at == START - timedelta(minutes=1)

    asyncio.run(_run())


def test_backend_selected_by_flag(tmp_path):
    assert build_session_store(durable=False).durable is False
    assert build_session_store(durable=True, path=str(tmp_path / "s.json")).durable is True


def test_turn_lock_is_per_conversation():
    store = InMemorySessionStore()
    assert store.lock("a") is store.lock("a")
    assert store.lock("a") is not store.lock("b")


def test_json_store_sees_writes_from_another_instance(tmp_path):
    async def _run():
        path = str(tmp_path / "sessions.json")
        clock = FixedClock(START)
        api_side = JsonFileSessionStore(path=path, clock=clock)
        worker_side = JsonFileSessionStore(path=path, clock=clock)
        await api_side.get_or_create("c1", customer_id="u1")
        await worker_side.append_history("c1", "assistant", "已加入佇列")
        await api_side.get_or_create("c2")

        history = await api_side.get_history("c1")
        assert [t.text for t in history] == ["已加入佇列"]
        assert sorted(JsonFileSessionStore(path=path, clock=clock).conversation_ids()) == ["c1", "c2"]

    asyncio.run(_run())


def test_failed_write_leaves_no_temp_file(tmp_path, monkeypatch):
    async def _run():
        store = JsonFileSessionStore(path=str(tmp_path / "sessions.json"), clock=FixedClock(START))

        def _replace(src, dst):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(os, "replace", _replace)
        await store.get_or_create("c1")
        assert list(tmp_path.iterdir()) == []

    asyncio.run(_run())
