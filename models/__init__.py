from .schemas import (
    INTENT_INFO,
    ClassificationResult,
    ConversationRecord,
    ConversationState,
    ConversationStatus,
    CustomerProfile,
    DialogueState,
    FAQEntry,
    HandlerResult,
    HandoffOutcome,
    HandoffReason,
    HandoffRequest,
    HistoryTurn,
    IntentType,
    MessageResult,
    ScoredFAQ,
    SlotType,
    SweepReport,
    ToolCallRecord,
    WorkingHoursConfig,
)

__all__ = [
    "INTENT_INFO",
    "ClassificationResult",
    "ConversationRecord",
    "ConversationState",
    "ConversationStatus",
    "CustomerProfile",
    "DialogueState",
    "FAQEntry",
    "HandlerResult",
    "HandoffOutcome",
    "HandoffReason",
    "HandoffRequest",
    "HistoryTurn",
    "IntentType",
    "MessageResult",
    "ScoredFAQ",
    "SlotType",
    "SweepReport",
    "ToolCallRecord",
    "WorkingHoursConfig",
]
