from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from agents.base import BaseAgent
from agents.dispatch import dispatch
from agents.escalation_agent import HumanHandoffScheduler, reason_for_turn
from agents.intent_classifier import IntentClassifier, build_intent_classifier
from agents.slot_filling import ContinuationPolicy, TurnContext, capture_relative_date, evaluate_continuation
from compliance.audit_logger import AuditLogger
from memory.session_memory import SessionStore, build_session_store
from models.schemas import (
    INTENT_INFO,
    ClassificationResult,
    ConversationState,
    DialogueState,
    HandlerResult,
    HandoffOutcome,
    HistoryTurn,
    IntentType,
    MessageResult,
    SlotType,
    ToolCallRecord,
    utcnow,
)
from settings import SETTINGS
from tools.entity_extractor import extract_flat
from tools.faq_tools import FAQRanker

logger = logging.getLogger(__name__)

SAFE_REPLY = "抱歉，系統暫時無法處理您的請求，請稍後再試或聯繫人工客服。"


def normalize_classifier_entities(raw: Dict[str, Any] | None) -> Dict[str, Any]:
    """Flatten classifier entity keys onto the slot keys used by the extractor."""
    entities: Dict[str, Any] = {}
    for key, value in (raw or {}).items():
        if value in (None, "", [], {}):
            continue
        name = str(key).strip().lower().replace("-", "_")
        if name in {"cabin", "cabin_class", "class_type"}:
            name = "class"
        elif name in {"pnr", "booking_reference", "booking_code"}:
            name = "booking_ref"
        elif name in {"flight", "flight_number"}:
            name = "flight_no"
        elif name in {"passenger_count", "pax"}:
            name = "passengers"
        entities[name] = value
    return entities


class DialogueOrchestrator(BaseAgent):
    """Runs one conversational turn end to end.

    Decides whether the message continues an open question, classifies it
    otherwise, merges entities, dispatches to the intent handler, updates the
    dialogue state and hands off to a human when the handler asks for one.
    """

    def __init__(
        self,
        session_store: SessionStore | None = None,
        classifier: IntentClassifier | None = None,
        faq_ranker: FAQRanker | None = None,
        scheduler: HumanHandoffScheduler | None = None,
        policy: ContinuationPolicy | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
        classifier_timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(name="dialogue_orchestrator", audit_logger=audit_logger)
        self.clock = clock or utcnow
        self.session_store = session_store or build_session_store(clock=self.clock)
        self.faq_ranker = faq_ranker if faq_ranker is not None else FAQRanker()
        self.classifier = classifier or build_intent_classifier(faq_ranker=self.faq_ranker)
        self.scheduler = scheduler or HumanHandoffScheduler(
            session_store=self.session_store,
            audit_logger=self.audit_logger,
            clock=self.clock,
        )
        if self.scheduler.session_store is None:
            self.scheduler.session_store = self.session_store
        self.policy = policy or ContinuationPolicy.from_settings()
        self.classifier_timeout_seconds = classifier_timeout_seconds or SETTINGS.classifier_timeout_seconds

    async def handle_message(
        self,
        text: str,
        conversation_id: str,
        user_id: str | None = None,
        region_id: str | None = None,
    ) -> MessageResult:
        start = time.perf_counter()
        try:
            async with self.session_store.lock(conversation_id):
                result = await self._run_turn(text or "", conversation_id, user_id, region_id)
        except Exception:
            logger.exception("dialogue_turn_failed", extra={"conversation_id": conversation_id})
            self.build_decision_log(
                session_id=conversation_id,
                action="turn_failed",
                reasoning="unhandled error while processing the message",
                outcome="error",
            )
            return MessageResult(
                conversation_id=conversation_id,
                reply=SAFE_REPLY,
                intent=IntentType.UNKNOWN,
                intent_name=INTENT_INFO[IntentType.UNKNOWN].name,
                category=INTENT_INFO[IntentType.UNKNOWN].category,
                requires_human=True,
                processing_ms=int((time.perf_counter() - start) * 1000),
                success=False,
            )
        result.processing_ms = int((time.perf_counter() - start) * 1000)
        return result

    async def _classify(self, text: str, conversation_id: str, history: List[HistoryTurn]) -> ClassificationResult:
        try:
            return await asyncio.wait_for(
                self.classifier.classify(text, history),
                timeout=self.classifier_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "intent_classifier_failed",
                extra={"conversation_id": conversation_id, "provider": self.classifier.provider, "error": repr(exc)},
            )
            return ClassificationResult(
                intent=IntentType.UNKNOWN,
                confidence=0.0,
                provider=self.classifier.provider,
                failed=True,
                error=repr(exc),
            )

    async def _run_turn(
        self,
        text: str,
        conversation_id: str,
        user_id: str | None,
        region_id: str | None,
    ) -> MessageResult:
        now = self.clock()
        state = await self.session_store.get_or_create(conversation_id, customer_id=user_id, region_id=region_id)
        open_state = state.dialogue_state

        decision = evaluate_continuation(text, open_state, now, self.policy, today=now.date())
        if decision.stale:
            logger.debug("stale_dialogue_state_dropped", extra={"conversation_id": conversation_id})
            open_state = None

        if decision.is_continuation and open_state is not None:
            classification = ClassificationResult(
                intent=open_state.current_intent,
                confidence=open_state.confidence,
                provider="continuation",
            )
        else:
            classification = await self._classify(text, conversation_id, state.history)

        rule_entities = extract_flat(text, today=now.date())
        if decision.is_continuation and open_state is not None and SlotType.DATE in open_state.awaiting_slots and "date" not in rule_entities:
            relative = capture_relative_date(text)
            if relative:
                rule_entities["date"] = relative

        merged: Dict[str, Any] = {
            **(open_state.collected_info if open_state else {}),
            **state.entities,
            **rule_entities,
            **normalize_classifier_entities(classification.entities),
        }

        ctx = TurnContext(
            conversation_id=conversation_id,
            faq_ranker=self.faq_ranker,
            policy=self.policy,
            customer_id=state.customer_id,
            region_id=state.region_id,
            history=list(state.history),
            dialogue_state=open_state,
            intent=classification.intent,
            confidence=classification.confidence,
            classifier_failed=classification.failed,
        )
        handled = dispatch(classification.intent, text, merged, ctx, decision.is_continuation)

        state.dialogue_state = self._next_dialogue_state(open_state, classification, handled, merged, now)
        state.entities = merged

        reply = handled.reply
        handoff: Optional[HandoffOutcome] = None
        if handled.requires_human:
            handoff = await self.scheduler.request_handoff(
                conversation_id,
                customer_id=state.customer_id,
                region_id=state.region_id,
                reason=reason_for_turn(classification.intent, classification.confidence, classification.failed),
                now=now,
            )
            if handoff.notice:
                reply = f"{reply}\n\n{handoff.notice}"

        state.history.append(HistoryTurn(role="user", text=text, timestamp=now))
        state.history.append(HistoryTurn(role="assistant", text=reply, timestamp=now))
        await self.session_store.save(state)

        self.build_decision_log(
            session_id=conversation_id,
            action=f"handled_{classification.intent.value.lower()}",
            reasoning=(
                f"continuation={decision.is_continuation} provider={classification.provider} "
                f"confidence={classification.confidence:.2f} "
                f"classifier_requires_human={classification.requires_human} handler_requires_human={handled.requires_human}"
            ),
            tool_calls=[
                ToolCallRecord(
                    tool_name="intent_classifier",
                    args={"continuation": decision.is_continuation, "requires_human": classification.requires_human},
                    result_summary=classification.intent.value,
                    success=not classification.failed,
                )
            ],
        )
        logger.info(
            "dialogue_turn_handled",
            extra={
                "conversation_id": conversation_id,
                "intent": classification.intent.value,
                "continuation": decision.is_continuation,
                "requires_human": handled.requires_human,
            },
        )

        info = INTENT_INFO[classification.intent]
        return MessageResult(
            conversation_id=conversation_id,
            reply=reply,
            intent=classification.intent,
            intent_name=info.name,
            category=info.category,
            confidence=classification.confidence,
            entities=merged,
            requires_human=handled.requires_human,
            suggested_actions=handled.suggested_actions,
            awaiting_info=handled.awaiting_info,
            is_continuation=decision.is_continuation,
            conversation_complete=handled.conversation_complete,
            handoff=handoff,
        )

    @staticmethod
    def _next_dialogue_state(
        open_state: Optional[DialogueState],
        classification: ClassificationResult,
        handled: HandlerResult,
        merged: Dict[str, Any],
        now: datetime,
    ) -> Optional[DialogueState]:
        if handled.awaiting_info:
            return DialogueState(
                current_intent=classification.intent,
                awaiting_slots=set(handled.awaiting_info),
                collected_info=dict(merged),
                last_question=handled.reply,
                last_asked_at=now,
                confidence=classification.confidence,
            )
        if handled.conversation_complete:
            return None
        if open_state is not None and open_state.current_intent != classification.intent:
            return None
        return open_state

    async def get_history(self, conversation_id: str, limit: int | None = None) -> List[HistoryTurn]:
        return await self.session_store.get_history(conversation_id, limit=limit)

    async def get_session(self, conversation_id: str) -> Optional[ConversationState]:
        return await self.session_store.get(conversation_id)

    async def reset_session(self, conversation_id: str) -> bool:
        async with self.session_store.lock(conversation_id):
            existed = await self.session_store.delete(conversation_id)
        self.build_decision_log(session_id=conversation_id, action="session_reset", reasoning=f"existed={existed}")
        return existed
