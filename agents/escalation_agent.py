from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from agents.base import BaseAgent
from compliance.audit_logger import AuditLogger
from memory.customer_profile import CustomerProfileRepository
from memory.session_memory import SessionStore
from models.schemas import (
    ConversationRecord,
    ConversationStatus,
    HandoffOutcome,
    HandoffReason,
    HandoffRequest,
    IntentType,
    ToolCallRecord,
    utcnow,
)
from settings import SETTINGS
from tools.handoff_tools import HandoffQueue
from tools.working_hours_tools import WorkingHoursService

logger = logging.getLogger(__name__)


def priority_for_vip(vip_level: int) -> int:
    if vip_level >= 4:
        return 5
    if vip_level >= 2:
        return 4
    return 3


def reason_for_turn(intent: IntentType, confidence: float, classifier_failed: bool = False) -> HandoffReason:
    if intent == IntentType.TRANSFER_AGENT:
        return HandoffReason.USER_REQUEST
    if classifier_failed or confidence < SETTINGS.low_confidence_threshold:
        return HandoffReason.LOW_CONFIDENCE
    return HandoffReason.COMPLEX_QUERY


class HumanHandoffScheduler(BaseAgent):
    """Moves conversations from the bot to the agent queue.

    Inside working hours a handoff goes straight to WAITING with a VIP-derived
    priority. Outside working hours the conversation stays BOT with the
    off-hours marker set, and the sweep promotes it later.
    """

    def __init__(
        self,
        queue: HandoffQueue | None = None,
        working_hours: WorkingHoursService | None = None,
        profiles: CustomerProfileRepository | None = None,
        session_store: SessionStore | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(name="handoff_scheduler", audit_logger=audit_logger)
        self.queue = queue or HandoffQueue()
        self.working_hours = working_hours or WorkingHoursService()
        self.profiles = profiles or CustomerProfileRepository()
        self.session_store = session_store
        self.clock = clock or utcnow

    async def priority_for_customer(self, customer_id: str | None) -> int:
        return priority_for_vip(await self.profiles.resolve_vip_level(customer_id))

    async def request_handoff(
        self,
        conversation_id: str,
        customer_id: str | None = None,
        region_id: str | None = None,
        reason: HandoffReason = HandoffReason.COMPLEX_QUERY,
        now: datetime | None = None,
    ) -> HandoffOutcome:
        now = now or self.clock()
        region = region_id or SETTINGS.default_region_id

        if self.working_hours.is_within_working_hours(region, now):
            priority = await self.priority_for_customer(customer_id)
            record = await self.queue.enqueue(conversation_id, customer_id, region, priority, reason, now=now)
            position = await self.queue.position(conversation_id)
            self.build_decision_log(
                session_id=conversation_id,
                action="handoff_queued",
                reasoning=f"reason={reason.value} priority={record.priority}",
                tool_calls=[ToolCallRecord(tool_name="handoff_queue.enqueue", args={"region_id": region}, result_summary=record.status.value)],
            )
            logger.info(
                "handoff_queued",
                extra={"conversation_id": conversation_id, "priority": record.priority, "position": position},
            )
            return HandoffOutcome(
                conversation_id=conversation_id,
                status=record.status,
                queued=True,
                priority=record.priority,
                queue_position=position,
            )

        record, newly_marked = await self.queue.mark_off_hours_pending(conversation_id, customer_id, region, reason, now=now)
        if record.status != ConversationStatus.BOT:
            # already with an agent; nothing to mark
            return HandoffOutcome(
                conversation_id=conversation_id,
                status=record.status,
                queued=record.status == ConversationStatus.WAITING,
                priority=record.priority,
                queue_position=await self.queue.position(conversation_id),
            )
        self.build_decision_log(
            session_id=conversation_id,
            action="handoff_deferred_off_hours",
            reasoning=f"reason={reason.value} newly_marked={newly_marked}",
        )
        logger.info("handoff_deferred_off_hours", extra={"conversation_id": conversation_id, "region_id": region})
        return HandoffOutcome(
            conversation_id=conversation_id,
            status=record.status,
            off_hours=True,
            priority=record.priority,
            notice=self.working_hours.off_hours_message(region) if newly_marked else None,
        )

    async def get_queue_snapshot(self, region_id: str | None = None) -> List[HandoffRequest]:
        return await self.queue.snapshot(region_id)

    async def get_queue_position(self, conversation_id: str) -> int:
        return await self.queue.position(conversation_id)

    async def get_queue_stats(self, region_id: str | None = None) -> Dict[str, object]:
        return await self.queue.stats(region_id, now=self.clock())

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        return await self.queue.get(conversation_id)

    async def assign(self, conversation_id: str, agent_id: str) -> ConversationRecord:
        record = await self.queue.assign(conversation_id, agent_id, now=self.clock())
        self.build_decision_log(session_id=conversation_id, action="conversation_assigned", reasoning=f"agent={agent_id}")
        return record

    async def transfer(self, conversation_id: str, agent_id: str, reason: str = "") -> ConversationRecord:
        record = await self.queue.transfer(conversation_id, agent_id, reason=reason, now=self.clock())
        self.build_decision_log(session_id=conversation_id, action="conversation_transferred", reasoning=f"agent={agent_id} {reason}".strip())
        return record

    async def close(self, conversation_id: str, summary: str = "") -> ConversationRecord:
        record = await self.queue.close(conversation_id, summary=summary, now=self.clock())
        if self.session_store is not None:
            await self.session_store.clear_dialogue_state(conversation_id)
        self.build_decision_log(session_id=conversation_id, action="conversation_closed", reasoning=summary or "closed")
        return record
