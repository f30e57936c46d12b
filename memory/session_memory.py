from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, List, Optional

from models.schemas import ConversationState, HistoryTurn, utcnow
from settings import SETTINGS

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SessionStore:
    """Per-conversation state keyed by conversation id.

    Holds the rolling history, accumulated entities and the open dialogue
    state. Entries idle longer than ``ttl_seconds`` are dropped on access or
    by ``purge_expired``. Callers serialize turns with ``lock(conversation_id)``.
    """

    durable = False

    def __init__(
        self,
        ttl_seconds: int | None = None,
        history_limit: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else SETTINGS.session_ttl_seconds
        self.history_limit = history_limit if history_limit is not None else SETTINGS.history_max_turns
        self.clock = clock or utcnow
        self._sessions: Dict[str, ConversationState] = {}
        self._touch: Dict[str, datetime] = {}
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        self._lock = Lock()

    def _persist(self) -> None:
        return None

    def _refresh(self) -> None:
        return None

    def lock(self, conversation_id: str) -> asyncio.Lock:
        turn_lock = self._turn_locks.get(conversation_id)
        if turn_lock is None:
            turn_lock = asyncio.Lock()
            self._turn_locks[conversation_id] = turn_lock
        return turn_lock

    def _expired(self, conversation_id: str, now: datetime) -> bool:
        touched = self._touch.get(conversation_id)
        return touched is not None and now - touched > timedelta(seconds=self.ttl_seconds)

    def _drop(self, conversation_id: str) -> None:
        self._sessions.pop(conversation_id, None)
        self._touch.pop(conversation_id, None)
        turn_lock = self._turn_locks.get(conversation_id)
        if turn_lock is not None and not turn_lock.locked():
            self._turn_locks.pop(conversation_id, None)

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        now = self.clock()
        with self._lock:
            self._refresh()
            if self._expired(conversation_id, now):
                self._drop(conversation_id)
                self._persist()
                return None
            state = self._sessions.get(conversation_id)
            return state.model_copy(deep=True) if state else None

    async def get_or_create(
        self,
        conversation_id: str,
        customer_id: str | None = None,
        region_id: str | None = None,
    ) -> ConversationState:
        now = self.clock()
        with self._lock:
            self._refresh()
            if self._expired(conversation_id, now):
                logger.debug("session_expired", extra={"conversation_id": conversation_id})
                self._drop(conversation_id)
            state = self._sessions.get(conversation_id)
            if state is None:
                state = ConversationState(
                    session_id=conversation_id,
                    customer_id=customer_id,
                    region_id=region_id,
                    created_at=now,
                    updated_at=now,
                )
                self._sessions[conversation_id] = state
                self._touch[conversation_id] = now
                self._persist()
            else:
                changed = False
                if customer_id and state.customer_id != customer_id:
                    state.customer_id = customer_id
                    changed = True
                if region_id and state.region_id != region_id:
                    state.region_id = region_id
                    changed = True
                if changed:
                    self._persist()
            return state.model_copy(deep=True)

    async def save(self, state: ConversationState) -> ConversationState:
        now = self.clock()
        with self._lock:
            self._refresh()
            stored = state.model_copy(deep=True)
            if len(stored.history) > self.history_limit:
                stored.history = stored.history[-self.history_limit :]
            stored.updated_at = now
            self._sessions[stored.session_id] = stored
            self._touch[stored.session_id] = now
            self._persist()
            return stored.model_copy(deep=True)

    async def append_history(self, conversation_id: str, role: str, text: str) -> ConversationState:
        now = self.clock()
        with self._lock:
            self._refresh()
            state = self._sessions.get(conversation_id)
            if state is None:
                state = ConversationState(session_id=conversation_id, created_at=now)
                self._sessions[conversation_id] = state
            state.history.append(HistoryTurn(role=role, text=text, timestamp=now))  # type: ignore[arg-type]
            if len(state.history) > self.history_limit:
                state.history = state.history[-self.history_limit :]
            state.updated_at = now
            self._touch[conversation_id] = now
            self._persist()
            return state.model_copy(deep=True)

    async def get_history(self, conversation_id: str, limit: int | None = None) -> List[HistoryTurn]:
        state = await self.get(conversation_id)
        if state is None:
            return []
        history = state.history
        return history[-limit:] if limit else history

    async def clear_dialogue_state(self, conversation_id: str) -> None:
        with self._lock:
            self._refresh()
            state = self._sessions.get(conversation_id)
            if state is None or state.dialogue_state is None:
                return
            state.dialogue_state = None
            state.updated_at = self.clock()
            self._persist()

    async def delete(self, conversation_id: str) -> bool:
        with self._lock:
            self._refresh()
            existed = conversation_id in self._sessions
            self._drop(conversation_id)
            self._persist()
            return existed

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        with self._lock:
            self._refresh()
            stale = [cid for cid in list(self._sessions) if self._expired(cid, now)]
            for cid in stale:
                self._drop(cid)
            if stale:
                self._persist()
        if stale:
            logger.info("sessions_purged", extra={"count": len(stale)})
        return len(stale)

    def conversation_ids(self) -> List[str]:
        with self._lock:
            self._refresh()
            return list(self._sessions)


class InMemorySessionStore(SessionStore):
    durable = False


class JsonFileSessionStore(SessionStore):
    durable = True

    def __init__(
        self,
        path: str | None = None,
        ttl_seconds: int | None = None,
        history_limit: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, history_limit=history_limit, clock=clock)
        self.path = path or SETTINGS.session_store_path
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError):
            logger.warning("session_store_load_failed", extra={"path": self.path}, exc_info=True)
            return
        sessions: Dict[str, ConversationState] = {}
        for key, raw in dict(payload.get("sessions", {})).items():
            try:
                sessions[str(key)] = ConversationState.model_validate(raw)
            except ValueError:
                logger.warning("session_store_skipped_record", extra={"conversation_id": key})
        touch: Dict[str, datetime] = {}
        for key, raw in dict(payload.get("touch", {})).items():
            try:
                touch[str(key)] = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
            except ValueError:
                continue
        self._sessions = sessions
        self._touch = touch

    def _refresh(self) -> None:
        # another process may share the file
        self._load()

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {
            "sessions": {k: v.model_dump(mode="json") for k, v in self._sessions.items()},
            "touch": {k: ts.isoformat() for k, ts in self._touch.items()},
        }
        tmp = f"{self.path}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.remove(tmp)
            logger.warning("session_store_persist_failed", extra={"path": self.path, "error": repr(exc)})


def build_session_store(durable: bool | None = None, path: str | None = None, clock: Clock | None = None) -> SessionStore:
    use_durable = SETTINGS.session_store_durable if durable is None else durable
    if use_durable:
        return JsonFileSessionStore(path=path, clock=clock)
    return InMemorySessionStore(clock=clock)
