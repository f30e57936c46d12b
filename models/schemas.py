from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntentType(str, Enum):
    TICKET_BOOK = "TICKET_BOOK"
    TICKET_CHANGE = "TICKET_CHANGE"
    TICKET_CANCEL = "TICKET_CANCEL"
    QUOTE_REQUEST = "QUOTE_REQUEST"
    FLIGHT_QUERY = "FLIGHT_QUERY"
    BOOKING_STATUS = "BOOKING_STATUS"
    VISA_INQUIRY = "VISA_INQUIRY"
    VISA_PROGRESS = "VISA_PROGRESS"
    PAYMENT_REQUEST = "PAYMENT_REQUEST"
    RECEIPT_REQUEST = "RECEIPT_REQUEST"
    PASSENGER_INFO = "PASSENGER_INFO"
    BAGGAGE_INQUIRY = "BAGGAGE_INQUIRY"
    SEAT_REQUEST = "SEAT_REQUEST"
    GREETING = "GREETING"
    TRANSFER_AGENT = "TRANSFER_AGENT"
    FAQ_GENERAL = "FAQ_GENERAL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Any) -> "IntentType":
        try:
            return cls(str(raw or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class IntentInfo:
    name: str
    category: str
    automation: str


INTENT_INFO: Dict[IntentType, IntentInfo] = {
    IntentType.TICKET_BOOK: IntentInfo("訂票請求", "機票服務", "medium"),
    IntentType.TICKET_CHANGE: IntentInfo("改票請求", "機票服務", "medium"),
    IntentType.TICKET_CANCEL: IntentInfo("退票請求", "機票服務", "low"),
    IntentType.QUOTE_REQUEST: IntentInfo("報價查詢", "機票服務", "high"),
    IntentType.FLIGHT_QUERY: IntentInfo("航班查詢", "機票服務", "high"),
    IntentType.BOOKING_STATUS: IntentInfo("訂位狀態查詢", "機票服務", "high"),
    IntentType.VISA_INQUIRY: IntentInfo("簽證諮詢", "簽證護照", "high"),
    IntentType.VISA_PROGRESS: IntentInfo("簽證進度查詢", "簽證護照", "medium"),
    IntentType.PAYMENT_REQUEST: IntentInfo("付款請求", "付款收據", "high"),
    IntentType.RECEIPT_REQUEST: IntentInfo("收據請求", "付款收據", "medium"),
    IntentType.PASSENGER_INFO: IntentInfo("旅客資料", "資訊提供", "high"),
    IntentType.BAGGAGE_INQUIRY: IntentInfo("行李查詢", "資訊提供", "high"),
    IntentType.SEAT_REQUEST: IntentInfo("選位需求", "資訊提供", "medium"),
    IntentType.GREETING: IntentInfo("問候/閒聊", "對話管理", "high"),
    IntentType.TRANSFER_AGENT: IntentInfo("轉人工", "對話管理", "none"),
    IntentType.FAQ_GENERAL: IntentInfo("一般FAQ問題", "其他", "high"),
    IntentType.UNKNOWN: IntentInfo("無法識別", "其他", "none"),
}


class SlotType(str, Enum):
    DATE = "DATE"
    DESTINATION = "DESTINATION"
    PASSENGERS = "PASSENGERS"
    FLIGHT_NO = "FLIGHT_NO"
    BOOKING_REF = "BOOKING_REF"
    CLASS = "CLASS"
    DIRECTION = "DIRECTION"
    SEAT_PREFERENCE = "SEAT_PREFERENCE"
    TAX_ID = "TAX_ID"
    PHONE = "PHONE"
    CONFIRMATION = "CONFIRMATION"

    @property
    def entity_key(self) -> str:
        return SLOT_ENTITY_KEYS.get(self, self.value.lower())


SLOT_ENTITY_KEYS: Dict[SlotType, str] = {
    SlotType.DATE: "date",
    SlotType.DESTINATION: "destination",
    SlotType.PASSENGERS: "passengers",
    SlotType.FLIGHT_NO: "flight_no",
    SlotType.BOOKING_REF: "booking_ref",
    SlotType.CLASS: "class",
    SlotType.DIRECTION: "direction",
    SlotType.SEAT_PREFERENCE: "seat_preference",
    SlotType.TAX_ID: "tax_id",
    SlotType.PHONE: "phone",
    SlotType.CONFIRMATION: "confirmation",
}


class ConversationStatus(str, Enum):
    BOT = "BOT"
    WAITING = "WAITING"
    ASSIGNED = "ASSIGNED"
    CLOSED = "CLOSED"


class HandoffReason(str, Enum):
    USER_REQUEST = "USER_REQUEST"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    COMPLEX_QUERY = "COMPLEX_QUERY"
    SENSITIVE_TOPIC = "SENSITIVE_TOPIC"
    ESCALATION = "ESCALATION"
    OFF_HOURS_PENDING = "OFF_HOURS_PENDING"


class ToolCallRecord(BaseModel):
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result_summary: str = ""
    success: bool = True
    duration_ms: int = 0


class AgentDecisionLog(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str
    agent: str
    action: str
    reasoning: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    duration_ms: int = 0
    outcome: str = "ok"


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class DialogueState(BaseModel):
    current_intent: IntentType
    awaiting_slots: Set[SlotType] = Field(default_factory=set)
    collected_info: Dict[str, Any] = Field(default_factory=dict)
    last_question: str = ""
    last_asked_at: datetime = Field(default_factory=utcnow)
    confidence: float = 0.0


class ConversationState(BaseModel):
    session_id: str
    customer_id: Optional[str] = None
    region_id: Optional[str] = None
    history: List[HistoryTurn] = Field(default_factory=list)
    entities: Dict[str, Any] = Field(default_factory=dict)
    dialogue_state: Optional[DialogueState] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FAQEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    question: str
    answer: str
    keywords: List[str] = Field(default_factory=list)


class ScoredFAQ(FAQEntry):
    score: int = 0


class ClassificationResult(BaseModel):
    intent: IntentType = IntentType.UNKNOWN
    confidence: float = 0.0
    entities: Dict[str, Any] = Field(default_factory=dict)
    requires_human: bool = False
    provider: str = "keyword"
    failed: bool = False
    error: Optional[str] = None


class HandlerResult(BaseModel):
    reply: str
    requires_human: bool = False
    suggested_actions: List[str] = Field(default_factory=list)
    awaiting_info: List[SlotType] = Field(default_factory=list)
    conversation_complete: bool = False


class WorkingHoursConfig(BaseModel):
    start: str = "09:00"
    end: str = "18:00"
    timezone: str = "Asia/Taipei"
    work_days: Set[int] = Field(default_factory=lambda: {1, 2, 3, 4, 5})

    def start_minutes(self) -> int:
        return _hhmm_to_minutes(self.start)

    def end_minutes(self) -> int:
        return _hhmm_to_minutes(self.end)


def _hhmm_to_minutes(raw: str) -> int:
    hours, _, minutes = str(raw).partition(":")
    return int(hours) * 60 + int(minutes or 0)


class HandoffRequest(BaseModel):
    conversation_id: str
    region_id: str
    reason: Optional[HandoffReason] = None
    priority: int = Field(default=3, ge=1, le=5)
    requested_at: Optional[datetime] = None
    status: ConversationStatus = ConversationStatus.WAITING
    assigned_agent_id: Optional[str] = None


class ConversationRecord(BaseModel):
    conversation_id: str
    customer_id: Optional[str] = None
    region_id: str
    status: ConversationStatus = ConversationStatus.BOT
    priority: int = Field(default=3, ge=1, le=5)
    handoff_reason: Optional[HandoffReason] = None
    handoff_at: Optional[datetime] = None
    off_hours_pending: bool = False
    off_hours_marked_at: Optional[datetime] = None
    assigned_agent_id: Optional[str] = None
    closed_at: Optional[datetime] = None
    notices: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_handoff_request(self) -> HandoffRequest:
        return HandoffRequest(
            conversation_id=self.conversation_id,
            region_id=self.region_id,
            reason=self.handoff_reason,
            priority=self.priority,
            requested_at=self.handoff_at,
            status=self.status,
            assigned_agent_id=self.assigned_agent_id,
        )


class HandoffOutcome(BaseModel):
    conversation_id: str
    status: ConversationStatus
    queued: bool = False
    off_hours: bool = False
    priority: int = 3
    queue_position: int = 0
    notice: Optional[str] = None


class MessageResult(BaseModel):
    conversation_id: str
    reply: str
    intent: IntentType
    intent_name: str = ""
    category: str = ""
    confidence: float = 0.0
    entities: Dict[str, Any] = Field(default_factory=dict)
    requires_human: bool = False
    suggested_actions: List[str] = Field(default_factory=list)
    awaiting_info: List[SlotType] = Field(default_factory=list)
    is_continuation: bool = False
    conversation_complete: bool = False
    handoff: Optional[HandoffOutcome] = None
    processing_ms: int = 0
    success: bool = True


class SweepReport(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    ran_at: datetime = Field(default_factory=utcnow)


class CustomerProfile(BaseModel):
    customer_id: str
    display_name: Optional[str] = None
    phone: Optional[str] = None
    vip_level: int = Field(default=0, ge=0, le=5)
    region_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
