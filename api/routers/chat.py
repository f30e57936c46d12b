from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field


router = APIRouter(prefix="/chat", tags=["chat"])


class ChatMessageRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    user_id: Optional[str] = None
    region_id: Optional[str] = None


def _orchestrator(request: Request):
    return request.app.state.orchestrator


@router.post("/message")
async def post_chat_message(payload: ChatMessageRequest, request: Request):
    orchestrator = _orchestrator(request)
    result = await orchestrator.handle_message(
        payload.text,
        payload.conversation_id,
        user_id=payload.user_id,
        region_id=payload.region_id,
    )
    return result.model_dump(mode="json")


@router.get("/history/{conversation_id}")
async def get_chat_history(conversation_id: str, request: Request, limit: Optional[int] = None):
    orchestrator = _orchestrator(request)
    state = await orchestrator.get_session(conversation_id)
    if not state:
        raise HTTPException(status_code=404, detail="session_not_found")
    history = state.history[-limit:] if limit else state.history
    return {
        "conversation_id": conversation_id,
        "history": [turn.model_dump(mode="json") for turn in history],
        "entities": state.entities,
        "dialogue_state": state.dialogue_state.model_dump(mode="json") if state.dialogue_state else None,
    }


@router.delete("/session/{conversation_id}")
async def delete_chat_session(conversation_id: str, request: Request):
    orchestrator = _orchestrator(request)
    existed = await orchestrator.reset_session(conversation_id)
    if not existed:
        raise HTTPException(status_code=404, detail="session_not_found")
    return {"ok": True, "conversation_id": conversation_id}
