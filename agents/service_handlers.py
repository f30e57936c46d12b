from __future__ import annotations

from typing import Any, Dict

from agents.slot_filling import SlotFlow, TurnContext, ask_for
from models.schemas import HandlerResult, SlotType

SEAT_LABELS = {"WINDOW": "靠窗", "AISLE": "走道", "FRONT": "前排"}


def _faq_reply(message: str, ctx: TurnContext) -> str | None:
    hit = ctx.faq_ranker.best_answer(message)
    return hit.answer if hit else None


def handle_visa_inquiry(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    answer = _faq_reply(message, ctx)
    if answer:
        return HandlerResult(reply=answer, conversation_complete=True)
    destination = entities.get("destination")
    if not destination:
        return HandlerResult(
            reply=ask_for([SlotType.DESTINATION], "關於簽證問題，請告知您要前往的國家或城市：")
            + "\n\n常見諮詢：台胞證、泰國簽證、申根免簽等。",
            awaiting_info=[SlotType.DESTINATION],
        )
    return HandlerResult(
        reply=f"您詢問的是前往{destination}的簽證。\n\n各國簽證規定常有調整，我會為您查詢最新資訊。常見諮詢：台胞證、泰國簽證、申根免簽等。",
        conversation_complete=True,
    )


def handle_visa_progress(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return HandlerResult(
        reply=(
            "好的，我來查詢您的簽證/護照辦理進度，專人會為您確認。\n\n"
            "一般辦理時間參考：\n"
            "- 台胞證一般件：5-7個工作天\n"
            "- 台胞證急件：3個工作天\n"
            "- 護照換發：約4個工作天"
        ),
        requires_human=True,
        suggested_actions=["查詢辦理進度"],
        conversation_complete=True,
    )


PAYMENT_FLOW = SlotFlow(
    required=(SlotType.BOOKING_REF,),
    ask=lambda entities, missing: (
        "好的，我來協助您付款。我們提供線上刷卡（Visa/MasterCard/JCB）與銀行匯款。\n\n"
        + ask_for(missing, "請提供以下資訊，我會發送刷卡連結給您：")
    ),
    summary=lambda entities: f"請確認付款的訂位代號：{entities['booking_ref']}",
    final=lambda entities: (
        f"已確認付款需求，專人會將訂位代號 {entities['booking_ref']} 的刷卡連結發送給您。\n\n"
        "注意：刷卡連結有時效限制，請儘速完成付款。"
    ),
    suggested_actions=("發送刷卡連結",),
)


def handle_payment_request(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return PAYMENT_FLOW.run(message, entities, ctx, is_continuation)


def handle_receipt_request(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    lines = ["好的，我來協助您申請收據/發票。"]
    if entities.get("tax_id"):
        lines.append(f"統一編號：{entities['tax_id']}")
    else:
        lines.append("如需開立公司抬頭，請提供統一編號。")
    lines.append("收據會在付款完成後1-2個工作天由會計部門開立。")
    return HandlerResult(
        reply="\n".join(lines),
        requires_human=True,
        suggested_actions=["轉會計處理"],
        conversation_complete=True,
    )


def handle_passenger_info(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return HandlerResult(
        reply=(
            "好的，我已收到您提供的旅客資料。\n\n"
            "為確保資料正確，請確認以下訂票所需資訊是否完整：\n"
            "1. 護照英文姓名（需與護照完全一致）\n"
            "2. 出生日期\n"
            "3. 護照號碼\n"
            "4. 護照有效期限\n"
            "5. 國籍"
        ),
        suggested_actions=["確認資料"],
    )


def handle_baggage_inquiry(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    answer = _faq_reply(message, ctx)
    if answer:
        return HandlerResult(reply=answer, conversation_complete=True)
    airline = entities.get("airline")
    tail = f"您詢問的是{airline}的規定。" if airline else "請問您是搭乘哪家航空公司？"
    return HandlerResult(
        reply=f"關於行李規定，各航空公司略有不同。\n\n一般來說：\n- 經濟艙：20-30公斤\n- 商務艙：30-40公斤\n\n{tail}",
        conversation_complete=True,
    )


def handle_seat_request(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    preference = entities.get("seat_preference")
    if not preference:
        return HandlerResult(
            reply=ask_for([SlotType.SEAT_PREFERENCE], "好的，請問您偏好哪一種座位？"),
            awaiting_info=[SlotType.SEAT_PREFERENCE],
        )
    return HandlerResult(
        reply=(
            f"好的，我已記錄您的座位偏好：{SEAT_LABELS.get(preference, preference)}\n\n"
            "我們會在訂位時盡量為您安排偏好的座位。\n"
            "提醒：實際座位安排需視航空公司規定和可用座位而定。"
        ),
        suggested_actions=["記錄座位偏好"],
        conversation_complete=True,
    )
