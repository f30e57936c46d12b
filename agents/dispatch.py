from __future__ import annotations

from typing import Any, Callable, Dict

from agents import conversation_handlers, service_handlers, ticket_handlers
from agents.slot_filling import TurnContext
from models.schemas import HandlerResult, IntentType

IntentHandler = Callable[[str, Dict[str, Any], TurnContext, bool], HandlerResult]

INTENT_HANDLERS: Dict[IntentType, IntentHandler] = {
    IntentType.TICKET_BOOK: ticket_handlers.handle_ticket_book,
    IntentType.TICKET_CHANGE: ticket_handlers.handle_ticket_change,
    IntentType.TICKET_CANCEL: ticket_handlers.handle_ticket_cancel,
    IntentType.QUOTE_REQUEST: ticket_handlers.handle_quote_request,
    IntentType.FLIGHT_QUERY: ticket_handlers.handle_flight_query,
    IntentType.BOOKING_STATUS: ticket_handlers.handle_booking_status,
    IntentType.VISA_INQUIRY: service_handlers.handle_visa_inquiry,
    IntentType.VISA_PROGRESS: service_handlers.handle_visa_progress,
    IntentType.PAYMENT_REQUEST: service_handlers.handle_payment_request,
    IntentType.RECEIPT_REQUEST: service_handlers.handle_receipt_request,
    IntentType.PASSENGER_INFO: service_handlers.handle_passenger_info,
    IntentType.BAGGAGE_INQUIRY: service_handlers.handle_baggage_inquiry,
    IntentType.SEAT_REQUEST: service_handlers.handle_seat_request,
    IntentType.GREETING: conversation_handlers.handle_greeting,
    IntentType.TRANSFER_AGENT: conversation_handlers.handle_transfer_agent,
    IntentType.FAQ_GENERAL: conversation_handlers.handle_faq_general,
    IntentType.UNKNOWN: conversation_handlers.handle_unknown,
}

_unhandled = set(IntentType) - set(INTENT_HANDLERS)
if _unhandled:
    raise RuntimeError(f"intents without a handler: {sorted(i.value for i in _unhandled)}")


def dispatch(intent: IntentType, message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return INTENT_HANDLERS[intent](message, entities, ctx, is_continuation)
