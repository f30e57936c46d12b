from .entity_extractor import Entity, extract_all, flatten
from .faq_tools import FAQRanker
from .handoff_tools import ConversationNotFoundError, HandoffError, HandoffQueue, InvalidTransitionError
from .working_hours_tools import WorkingHoursService

__all__ = [
    "Entity",
    "extract_all",
    "flatten",
    "FAQRanker",
    "ConversationNotFoundError",
    "HandoffError",
    "HandoffQueue",
    "InvalidTransitionError",
    "WorkingHoursService",
]
