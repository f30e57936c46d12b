from __future__ import annotations

from typing import Any, Dict

from agents.slot_filling import TurnContext
from models.schemas import HandlerResult

GREETINGS = (
    "您好！我是金龍旅遊 AI 助理，很高興為您服務。請問有什麼可以幫您的嗎？",
    "您好！歡迎聯繫金龍旅遊。請問需要什麼協助呢？",
    "嗨！我是金龍旅遊的 AI 客服，請問有什麼可以為您服務的？",
)

MENU_REPLY = (
    "抱歉，我不太確定您的需求。您可以：\n\n"
    "1. 訂票/改票/退票\n"
    "2. 查詢航班或票價\n"
    "3. 簽證諮詢\n"
    "4. 付款或索取收據\n\n"
    "或者，請直接描述您的需求，我會盡力協助您。\n\n"
    "如需人工服務，請告訴我「找真人」。"
)

ESCALATE_REPLY = "抱歉，我暫時無法判斷您的需求，已為您轉請專人協助，請稍候。"

TRANSFER_REPLY = (
    "好的，我來為您轉接人工客服。\n\n"
    "服務時間：週一至週五 9:00-18:00\n\n"
    "如在非上班時間有緊急需求（72小時內出發），請撥打：\n"
    "📞 0988-157-972\n\n"
    "請稍候，客服人員會盡快與您聯繫。"
)


def handle_greeting(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    if "謝謝" in message or "感謝" in message:
        return HandlerResult(reply="不客氣！很高興能幫上忙。如有其他問題，隨時可以詢問喔！")
    if any(word in message for word in ("收到", "好的", "了解")):
        return HandlerResult(reply="好的，如有其他問題隨時告訴我！")
    return HandlerResult(reply=GREETINGS[len(ctx.history) // 2 % len(GREETINGS)])


def handle_transfer_agent(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return HandlerResult(
        reply=TRANSFER_REPLY,
        requires_human=True,
        suggested_actions=["轉接人工客服"],
        conversation_complete=True,
    )


def handle_faq_general(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    hit = ctx.faq_ranker.best_answer(message)
    if hit:
        return HandlerResult(reply=hit.answer, conversation_complete=True)
    return HandlerResult(
        reply="這個問題需要專人為您確認，我已為您轉交客服人員，請稍候。",
        requires_human=True,
        conversation_complete=True,
    )


def handle_unknown(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    hit = ctx.faq_ranker.best_answer(message)
    if hit:
        return HandlerResult(reply=hit.answer, conversation_complete=True)
    if ctx.classifier_failed:
        return HandlerResult(reply=ESCALATE_REPLY, requires_human=True, conversation_complete=True)
    return HandlerResult(reply=MENU_REPLY)
