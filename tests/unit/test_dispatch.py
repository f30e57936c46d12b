from __future__ import annotations

from agents.dispatch import INTENT_HANDLERS, dispatch
from agents.slot_filling import ContinuationPolicy, TurnContext
from models.schemas import HandlerResult, IntentType, SlotType
from tools.faq_tools import FAQRanker


def _ctx(**kwargs) -> TurnContext:
    return TurnContext(conversation_id="c1", faq_ranker=FAQRanker(), policy=ContinuationPolicy.from_settings(), **kwargs)


def test_every_intent_has_a_handler():
    assert set(INTENT_HANDLERS) == set(IntentType)


def test_every_handler_returns_a_reply():
    for intent in IntentType:
        result = dispatch(intent, "嗯", {}, _ctx(intent=intent), False)
        assert isinstance(result, HandlerResult)
        assert result.reply


def test_missing_slots_never_require_a_human():
    for intent in (IntentType.TICKET_BOOK, IntentType.TICKET_CHANGE, IntentType.TICKET_CANCEL, IntentType.QUOTE_REQUEST):
        result = dispatch(intent, "嗯", {}, _ctx(), False)
        assert result.awaiting_info
        assert not result.requires_human


def test_ticket_book_with_only_booking_ref_is_issuance():
    result = dispatch(IntentType.TICKET_BOOK, "幫我開票 AB12CD", {"booking_ref": "AB12CD"}, _ctx(), False)
    assert result.awaiting_info == [SlotType.CONFIRMATION]
    assert "開票" in result.reply


def test_visa_inquiry_prefers_faq_answer():
    result = dispatch(IntentType.VISA_INQUIRY, "去泰國需要簽證嗎？", {}, _ctx(), False)
    assert result.conversation_complete
    assert not result.requires_human
    assert "泰國" in result.reply


def test_visa_inquiry_asks_destination_without_faq_hit():
    ctx = TurnContext(conversation_id="c1", faq_ranker=FAQRanker(entries=[]), policy=ContinuationPolicy.from_settings())
    result = dispatch(IntentType.VISA_INQUIRY, "簽證", {}, ctx, False)
    assert result.awaiting_info == [SlotType.DESTINATION]


def test_seat_request_records_preference():
    assert dispatch(IntentType.SEAT_REQUEST, "選位", {}, _ctx(), False).awaiting_info == [SlotType.SEAT_PREFERENCE]
    done = dispatch(IntentType.SEAT_REQUEST, "靠窗", {"seat_preference": "WINDOW"}, _ctx(), True)
    assert "靠窗" in done.reply
    assert done.conversation_complete and not done.requires_human


def test_unknown_escalates_only_when_classifier_failed():
    assert not dispatch(IntentType.UNKNOWN, "qwerty", {}, _ctx(), False).requires_human
    assert dispatch(IntentType.UNKNOWN, "qwerty", {}, _ctx(classifier_failed=True), False).requires_human


def test_transfer_agent_requires_human():
    result = dispatch(IntentType.TRANSFER_AGENT, "找真人", {}, _ctx(), False)
    assert result.requires_human and result.conversation_complete
