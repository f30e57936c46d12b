from __future__ import annotations

from typing import Any, Dict, List

from agents.slot_filling import SlotFlow, TurnContext, ask_for
from models.schemas import HandlerResult, SlotType

CLASS_LABELS = {"BUSINESS": "商務艙", "ECONOMY": "經濟艙", "FIRST": "頭等艙", "PREMIUM_ECONOMY": "豪華經濟艙"}
DIRECTION_LABELS = {"OUTBOUND": "去程", "INBOUND": "回程"}

CHANGE_FEE_NOTICE = "改票可能會產生費用（約 TWD 800-3,300），實際費用需視票種規定而定。"
CANCEL_NOTICE = (
    "退票需要注意以下事項：\n"
    "1. 部分促銷票/特惠票可能不可退票\n"
    "2. 一般經濟艙退票手續費約 TWD 2,000-5,000\n"
    "3. 已使用的機票無法退票"
)


def trip_lines(entities: Dict[str, Any]) -> List[str]:
    lines: List[str] = []
    if entities.get("destination"):
        lines.append(f"目的地：{entities['destination']}")
    if entities.get("date"):
        lines.append(f"出發日期：{entities['date']}")
    if entities.get("date_return"):
        lines.append(f"回程日期：{entities['date_return']}")
    if entities.get("passengers"):
        lines.append(f"旅客人數：{entities['passengers']} 位")
    if entities.get("class"):
        lines.append(f"艙等：{CLASS_LABELS.get(entities['class'], entities['class'])}")
    if entities.get("direction"):
        lines.append(f"航段：{DIRECTION_LABELS.get(entities['direction'], entities['direction'])}")
    if entities.get("flight_no"):
        lines.append(f"航班：{entities['flight_no']}")
    if entities.get("booking_ref"):
        lines.append(f"訂位代號：{entities['booking_ref']}")
    return lines


def _block(title: str, entities: Dict[str, Any]) -> str:
    return "\n".join([title, *trip_lines(entities)])


BOOKING_FLOW = SlotFlow(
    required=(SlotType.DATE, SlotType.DESTINATION, SlotType.PASSENGERS),
    ask=lambda entities, missing: "\n".join(
        filter(None, [ask_for(missing, "好的，我來協助您訂票。請提供以下資訊："), *trip_lines(entities)])
    ),
    summary=lambda entities: _block("請確認您的訂票需求：", entities),
    final=lambda entities: _block("已確認您的訂票需求，專人會盡快為您查詢機位並回覆報價。", entities),
    suggested_actions=("確認訂位資訊", "發送付款連結"),
)

ISSUANCE_FLOW = SlotFlow(
    required=(SlotType.BOOKING_REF,),
    ask=lambda entities, missing: ask_for(missing),
    summary=lambda entities: _block("好的，我已收到您的開票請求。", entities),
    final=lambda entities: _block("已確認開票請求，專人確認訂位資訊後會通知您付款方式。", entities),
    suggested_actions=("確認訂位資訊", "發送付款連結"),
)

CHANGE_FLOW = SlotFlow(
    required=(SlotType.BOOKING_REF, SlotType.DATE),
    ask=lambda entities, missing: ask_for(missing, "好的，我來協助您改票。請提供以下資訊：") + f"\n\n{CHANGE_FEE_NOTICE}",
    summary=lambda entities: _block("請確認您的改票需求：", entities) + f"\n\n{CHANGE_FEE_NOTICE}",
    final=lambda entities: _block("已確認改票需求，專人會為您查詢改票費用並處理。", entities),
    suggested_actions=("查詢改票費用", "確認改票"),
)

CANCEL_FLOW = SlotFlow(
    required=(SlotType.BOOKING_REF,),
    ask=lambda entities, missing: f"我了解您想要退票。{CANCEL_NOTICE}\n\n" + ask_for(missing, "請提供以下資訊："),
    summary=lambda entities: _block("請確認您要退票的訂位：", entities) + f"\n\n{CANCEL_NOTICE}",
    final=lambda entities: _block("已確認退票需求，由於退票涉及費用計算，專人會為您處理。", entities),
    suggested_actions=("轉人工處理",),
)

QUOTE_FLOW = SlotFlow(
    required=(SlotType.DESTINATION, SlotType.DATE),
    ask=lambda entities, missing: "\n".join(
        filter(None, [ask_for(missing, "好的，我來為您查詢票價。為了給您準確的報價，請提供："), *trip_lines(entities)])
    ),
    summary=lambda entities: _block("請確認您的報價需求：", entities),
    final=lambda entities: _block("已確認報價需求，專人會盡快為您提供詳細報價。", entities),
    suggested_actions=("提供詳細報價",),
)

FLIGHT_QUERY_FLOW = SlotFlow(
    required=(SlotType.DESTINATION, SlotType.DATE),
    ask=lambda entities, missing: ask_for(missing, "好的，我來為您查詢航班。請告知："),
    summary=lambda entities: _block("請確認要查詢的航班條件：", entities),
    final=lambda entities: _block("已確認航班查詢條件，專人會為您查詢可用航班。", entities),
    suggested_actions=("查詢航班",),
)

BOOKING_STATUS_FLOW = SlotFlow(
    required=(SlotType.BOOKING_REF,),
    ask=lambda entities, missing: "請提供您的訂位代號，我來為您查詢訂位狀態。\n\n訂位代號格式範例：BTE2500208",
    summary=lambda entities: f"好的，我來查詢訂位代號 {entities['booking_ref']} 的狀態。",
    final=lambda entities: f"已確認查詢訂位代號 {entities['booking_ref']}，專人確認後會立即回覆您。",
    suggested_actions=("查詢訂位狀態",),
)


def handle_ticket_book(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    trip_started = any(entities.get(key) for key in ("date", "destination", "passengers"))
    if entities.get("booking_ref") and not trip_started:
        return ISSUANCE_FLOW.run(message, entities, ctx, is_continuation)
    return BOOKING_FLOW.run(message, entities, ctx, is_continuation)


def handle_ticket_change(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return CHANGE_FLOW.run(message, entities, ctx, is_continuation)


def handle_ticket_cancel(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return CANCEL_FLOW.run(message, entities, ctx, is_continuation)


def handle_quote_request(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return QUOTE_FLOW.run(message, entities, ctx, is_continuation)


def handle_flight_query(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return FLIGHT_QUERY_FLOW.run(message, entities, ctx, is_continuation)


def handle_booking_status(message: str, entities: Dict[str, Any], ctx: TurnContext, is_continuation: bool) -> HandlerResult:
    return BOOKING_STATUS_FLOW.run(message, entities, ctx, is_continuation)
