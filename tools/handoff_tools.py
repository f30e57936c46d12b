from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, List, Optional, Tuple

from models.schemas import ConversationRecord, ConversationStatus, HandoffReason, HandoffRequest, utcnow
from settings import SETTINGS

logger = logging.getLogger(__name__)


class HandoffError(RuntimeError):
    pass


class ConversationNotFoundError(HandoffError):
    pass


class InvalidTransitionError(HandoffError):
    pass


def queue_sort_key(record: ConversationRecord) -> Tuple[int, datetime]:
    return (-record.priority, record.handoff_at or record.created_at)


def is_ahead_of(other: ConversationRecord, record: ConversationRecord) -> bool:
    other_ts = other.handoff_at or other.created_at
    mine_ts = record.handoff_at or record.created_at
    return other.priority > record.priority or (other.priority == record.priority and other_ts < mine_ts)


class HandoffQueue:
    """Agent-side conversation records: BOT -> WAITING -> ASSIGNED -> CLOSED.

    Queue order is derived on every read from (priority desc, handoff time asc).
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path if path is not None else SETTINGS.handoff_queue_path
        self._records: Dict[str, ConversationRecord] = {}
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        """Replace the in-memory records with the file contents.

        Runs under the lock before every operation so that writes from another
        process (the Celery sweep worker) are seen and not overwritten.
        """
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError):
            logger.warning("handoff_queue_load_failed", extra={"path": self.path}, exc_info=True)
            return
        records: Dict[str, ConversationRecord] = {}
        for raw in payload.get("conversations", []):
            try:
                record = ConversationRecord.model_validate(raw)
            except ValueError:
                continue
            records[record.conversation_id] = record
        self._records = records

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = f"{self.path}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump({"conversations": [r.model_dump(mode="json") for r in self._records.values()]}, fh, ensure_ascii=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.remove(tmp)
            logger.warning("handoff_queue_persist_failed", extra={"path": self.path, "error": repr(exc)})

    def _require(self, conversation_id: str) -> ConversationRecord:
        record = self._records.get(conversation_id)
        if record is None:
            raise ConversationNotFoundError(f"conversation_not_found: {conversation_id}")
        return record

    async def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            self._load()
            record = self._records.get(conversation_id)
            return record.model_copy(deep=True) if record else None

    async def enqueue(
        self,
        conversation_id: str,
        customer_id: str | None,
        region_id: str,
        priority: int,
        reason: HandoffReason,
        now: datetime | None = None,
    ) -> ConversationRecord:
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._records.get(conversation_id)
            if record is None:
                record = ConversationRecord(conversation_id=conversation_id, customer_id=customer_id, region_id=region_id, created_at=now)
                self._records[conversation_id] = record
            if record.status in (ConversationStatus.WAITING, ConversationStatus.ASSIGNED):
                record.priority = max(record.priority, priority)
            else:
                if record.status == ConversationStatus.CLOSED:
                    record.assigned_agent_id = None
                    record.closed_at = None
                    record.priority = priority
                else:
                    record.priority = max(record.priority, priority)
                record.status = ConversationStatus.WAITING
                record.handoff_at = now
                record.handoff_reason = reason
            record.off_hours_pending = False
            record.off_hours_marked_at = None
            record.customer_id = record.customer_id or customer_id
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True)

    async def mark_off_hours_pending(
        self,
        conversation_id: str,
        customer_id: str | None,
        region_id: str,
        reason: HandoffReason,
        now: datetime | None = None,
    ) -> Tuple[ConversationRecord, bool]:
        """Set the off-hours marker on a BOT conversation. Returns (record, newly_marked)."""
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._records.get(conversation_id)
            if record is None:
                record = ConversationRecord(conversation_id=conversation_id, customer_id=customer_id, region_id=region_id, created_at=now)
                self._records[conversation_id] = record
            if record.status == ConversationStatus.CLOSED:
                record.status = ConversationStatus.BOT
                record.assigned_agent_id = None
                record.closed_at = None
            if record.status != ConversationStatus.BOT or record.off_hours_pending:
                return record.model_copy(deep=True), False
            record.off_hours_pending = True
            record.off_hours_marked_at = now
            record.handoff_reason = reason
            record.customer_id = record.customer_id or customer_id
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True), True

    async def pending_off_hours(self) -> List[ConversationRecord]:
        with self._lock:
            self._load()
            return [
                r.model_copy(deep=True)
                for r in self._records.values()
                if r.status == ConversationStatus.BOT and r.off_hours_pending
            ]

    async def promote(self, conversation_id: str, priority: int, notice: str, now: datetime | None = None) -> ConversationRecord:
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._require(conversation_id)
            if record.status != ConversationStatus.BOT or not record.off_hours_pending:
                raise InvalidTransitionError(f"not_off_hours_pending: {conversation_id}")
            record.status = ConversationStatus.WAITING
            record.priority = max(record.priority, priority)
            record.handoff_at = now
            record.off_hours_pending = False
            record.off_hours_marked_at = None
            record.notices.append(notice)
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True)

    async def restore(self, record: ConversationRecord) -> ConversationRecord:
        """Put back a previously read record, undoing later transitions."""
        with self._lock:
            self._load()
            self._records[record.conversation_id] = record.model_copy(deep=True)
            self._persist()
            return record.model_copy(deep=True)

    def _waiting(self, region_id: str | None) -> List[ConversationRecord]:
        return [
            r
            for r in self._records.values()
            if r.status == ConversationStatus.WAITING and (region_id is None or r.region_id == region_id)
        ]

    async def snapshot(self, region_id: str | None = None) -> List[HandoffRequest]:
        with self._lock:
            self._load()
            ordered = sorted(self._waiting(region_id), key=queue_sort_key)
            return [r.to_handoff_request() for r in ordered]

    async def position(self, conversation_id: str) -> int:
        with self._lock:
            self._load()
            record = self._records.get(conversation_id)
            if record is None or record.status != ConversationStatus.WAITING:
                return 0
            ahead = sum(1 for other in self._waiting(record.region_id) if is_ahead_of(other, record))
            return ahead + 1

    async def stats(self, region_id: str | None = None, now: datetime | None = None) -> Dict[str, object]:
        now = now or utcnow()
        with self._lock:
            self._load()
            waiting = self._waiting(region_id)
            waits = [(now - (r.handoff_at or r.created_at)).total_seconds() / 60 for r in waiting]
            assigned = sum(
                1
                for r in self._records.values()
                if r.status == ConversationStatus.ASSIGNED and (region_id is None or r.region_id == region_id)
            )
            pending = sum(
                1
                for r in self._records.values()
                if r.off_hours_pending and (region_id is None or r.region_id == region_id)
            )
        return {
            "region_id": region_id,
            "waiting_count": len(waiting),
            "assigned_count": assigned,
            "off_hours_pending_count": pending,
            "max_wait_minutes": int(max(waits)) if waits else 0,
        }

    async def assign(self, conversation_id: str, agent_id: str, now: datetime | None = None) -> ConversationRecord:
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._require(conversation_id)
            if record.status != ConversationStatus.WAITING:
                raise InvalidTransitionError(f"cannot_assign_from_{record.status.value.lower()}")
            record.status = ConversationStatus.ASSIGNED
            record.assigned_agent_id = agent_id
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True)

    async def transfer(self, conversation_id: str, agent_id: str, reason: str = "", now: datetime | None = None) -> ConversationRecord:
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._require(conversation_id)
            if record.status != ConversationStatus.ASSIGNED:
                raise InvalidTransitionError(f"cannot_transfer_from_{record.status.value.lower()}")
            if record.assigned_agent_id == agent_id:
                raise InvalidTransitionError("already_assigned_to_agent")
            record.assigned_agent_id = agent_id
            record.notices.append(f"對話已轉接給 {agent_id}" + (f"（原因：{reason}）" if reason else ""))
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True)

    async def close(self, conversation_id: str, summary: str = "", now: datetime | None = None) -> ConversationRecord:
        now = now or utcnow()
        with self._lock:
            self._load()
            record = self._require(conversation_id)
            if record.status == ConversationStatus.CLOSED:
                raise InvalidTransitionError("already_closed")
            record.status = ConversationStatus.CLOSED
            record.closed_at = now
            record.off_hours_pending = False
            record.off_hours_marked_at = None
            record.notices.append("對話已結束" + (f"（摘要：{summary}）" if summary else ""))
            record.updated_at = now
            self._persist()
            return record.model_copy(deep=True)

    async def cleanup_closed(self, retention_days: int | None = None, now: datetime | None = None) -> int:
        days = SETTINGS.closed_retention_days if retention_days is None else retention_days
        cutoff = (now or utcnow()) - timedelta(days=days)
        with self._lock:
            self._load()
            stale = [
                cid
                for cid, r in self._records.items()
                if r.status == ConversationStatus.CLOSED and (r.closed_at or r.updated_at) < cutoff
            ]
            for cid in stale:
                self._records.pop(cid, None)
            if stale:
                self._persist()
        if stale:
            logger.info("closed_conversations_removed", extra={"count": len(stale), "retention_days": days})
        return len(stale)

    async def all_records(self) -> List[ConversationRecord]:
        with self._lock:
            self._load()
            return [r.model_copy(deep=True) for r in self._records.values()]
