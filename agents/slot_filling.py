from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Set

from models.schemas import DialogueState, HandlerResult, HistoryTurn, IntentType, SlotType
from settings import SETTINGS
from tools.entity_extractor import detected_slots
from tools.faq_tools import FAQRanker

RELATIVE_DATE_WORDS = (
    "今天",
    "明天",
    "後天",
    "下週",
    "下周",
    "下禮拜",
    "下個月",
    "月底",
    "月初",
    "週末",
    "周末",
    "星期",
    "禮拜",
)

QUESTION_MARKERS = ("?", "？", "嗎", "呢", "什麼", "怎麼")

SLOT_LABELS: Dict[SlotType, str] = {
    SlotType.DATE: "出發日期",
    SlotType.DESTINATION: "目的地",
    SlotType.PASSENGERS: "旅客人數",
    SlotType.FLIGHT_NO: "航班號碼",
    SlotType.BOOKING_REF: "訂位代號",
    SlotType.CLASS: "艙等",
    SlotType.DIRECTION: "去程或回程",
    SlotType.SEAT_PREFERENCE: "座位偏好（靠窗/走道/前排）",
    SlotType.TAX_ID: "統一編號",
    SlotType.PHONE: "聯絡電話",
    SlotType.CONFIRMATION: "確認",
}

CONFIRM_PROMPT = "以上資訊正確嗎？請回覆「確認」，我會為您轉交專人處理。"


@dataclass(frozen=True)
class ContinuationPolicy:
    window_seconds: int = 300
    short_message_max_chars: int = 10
    confirmation_phrases: FrozenSet[str] = frozenset()
    confirmation_prefix: str = "確認"

    @classmethod
    def from_settings(cls) -> "ContinuationPolicy":
        return cls(
            window_seconds=SETTINGS.continuation_window_seconds,
            short_message_max_chars=SETTINGS.short_message_max_chars,
            confirmation_phrases=frozenset(SETTINGS.confirmation_phrases),
        )


def is_confirmation(message: str, policy: ContinuationPolicy) -> bool:
    text = (message or "").strip()
    if not text:
        return False
    if text in policy.confirmation_phrases or text.lower() in {p.lower() for p in policy.confirmation_phrases}:
        return True
    return text.startswith(policy.confirmation_prefix)


def has_relative_date(message: str) -> bool:
    return any(word in (message or "") for word in RELATIVE_DATE_WORDS)


def is_short_non_question(message: str, policy: ContinuationPolicy) -> bool:
    text = (message or "").strip()
    if not text or len(text) > policy.short_message_max_chars:
        return False
    return not any(marker in text for marker in QUESTION_MARKERS)


def detect_slots(message: str, policy: ContinuationPolicy, today: date | None = None) -> Set[SlotType]:
    found = set(detected_slots(message, today=today))
    if has_relative_date(message):
        found.add(SlotType.DATE)
    if is_confirmation(message, policy):
        found.add(SlotType.CONFIRMATION)
    return found


@dataclass
class ContinuationDecision:
    is_continuation: bool
    detected: Set[SlotType] = field(default_factory=set)
    short: bool = False
    stale: bool = False


def evaluate_continuation(
    message: str,
    state: Optional[DialogueState],
    now: datetime,
    policy: ContinuationPolicy,
    today: date | None = None,
) -> ContinuationDecision:
    detected = detect_slots(message, policy, today=today)
    short = is_short_non_question(message, policy)
    if state is None or not state.awaiting_slots:
        return ContinuationDecision(False, detected, short)
    elapsed = (now - state.last_asked_at).total_seconds()
    if elapsed > policy.window_seconds:
        return ContinuationDecision(False, detected, short, stale=True)
    eligible = bool(detected & set(state.awaiting_slots)) or short
    return ContinuationDecision(eligible, detected, short)


def capture_relative_date(message: str) -> Optional[str]:
    if has_relative_date(message):
        return (message or "").strip() or None
    return None


@dataclass
class TurnContext:
    conversation_id: str
    faq_ranker: FAQRanker
    policy: ContinuationPolicy
    customer_id: Optional[str] = None
    region_id: Optional[str] = None
    history: List[HistoryTurn] = field(default_factory=list)
    dialogue_state: Optional[DialogueState] = None
    intent: IntentType = IntentType.UNKNOWN
    confidence: float = 0.0
    classifier_failed: bool = False


def missing_slots(entities: Dict[str, Any], required: Sequence[SlotType]) -> List[SlotType]:
    return [slot for slot in required if entities.get(slot.entity_key) in (None, "", [], {})]


def ask_for(missing: Sequence[SlotType], lead: str = "") -> str:
    lines = [f"{i}. {SLOT_LABELS.get(slot, slot.value)}" for i, slot in enumerate(missing, start=1)]
    intro = lead or "好的，還需要您提供以下資訊："
    return intro + "\n" + "\n".join(lines)


Renderer = Callable[[Dict[str, Any]], str]


@dataclass(frozen=True)
class SlotFlow:
    """Collect required slots, then ask for explicit confirmation before concluding."""

    required: Sequence[SlotType]
    ask: Callable[[Dict[str, Any], List[SlotType]], str]
    summary: Renderer
    final: Renderer
    suggested_actions: Sequence[str] = ()

    def run(self, message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
        missing = missing_slots(entities, self.required)
        if missing:
            return HandlerResult(
                reply=self.ask(entities, missing),
                requires_human=False,
                suggested_actions=list(self.suggested_actions),
                awaiting_info=missing,
            )
        if is_continuation and is_confirmation(message, ctx.policy):
            return HandlerResult(
                reply=self.final(entities),
                requires_human=True,
                suggested_actions=list(self.suggested_actions),
                conversation_complete=True,
            )
        return HandlerResult(
            reply=f"{self.summary(entities)}\n\n{CONFIRM_PROMPT}",
            requires_human=False,
            suggested_actions=list(self.suggested_actions),
            awaiting_info=[SlotType.CONFIRMATION],
        )
