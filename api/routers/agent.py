from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from tools.handoff_tools import ConversationNotFoundError, InvalidTransitionError


router = APIRouter(prefix="/agent", tags=["agent"])


class AssignRequest(BaseModel):
    agent_id: str = Field(min_length=1)


class TransferRequest(BaseModel):
    agent_id: str = Field(min_length=1)
    reason: str = ""


class CloseRequest(BaseModel):
    summary: str = ""


def _scheduler(request: Request):
    return request.app.state.scheduler


async def _transition(action, conversation_id: str, *args):
    try:
        record = await action(conversation_id, *args)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return record.model_dump(mode="json")


@router.get("/queue")
async def get_queue(request: Request, region_id: Optional[str] = None):
    queue = await _scheduler(request).get_queue_snapshot(region_id)
    return {"region_id": region_id, "queue": [item.model_dump(mode="json") for item in queue]}


@router.get("/queue/stats")
async def get_queue_stats(request: Request, region_id: Optional[str] = None):
    return await _scheduler(request).get_queue_stats(region_id)


@router.get("/queue/{conversation_id}/position")
async def get_queue_position(conversation_id: str, request: Request):
    scheduler = _scheduler(request)
    record = await scheduler.get_conversation(conversation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="conversation_not_found")
    return {
        "conversation_id": conversation_id,
        "status": record.status.value,
        "position": await scheduler.get_queue_position(conversation_id),
    }


@router.post("/conversations/{conversation_id}/assign")
async def assign_conversation(conversation_id: str, payload: AssignRequest, request: Request):
    return await _transition(_scheduler(request).assign, conversation_id, payload.agent_id)


@router.post("/conversations/{conversation_id}/transfer")
async def transfer_conversation(conversation_id: str, payload: TransferRequest, request: Request):
    return await _transition(_scheduler(request).transfer, conversation_id, payload.agent_id, payload.reason)


@router.post("/conversations/{conversation_id}/close")
async def close_conversation(conversation_id: str, request: Request, payload: Optional[CloseRequest] = None):
    summary = payload.summary if payload else ""
    return await _transition(_scheduler(request).close, conversation_id, summary)


@router.post("/sweep")
async def trigger_sweep(request: Request):
    report = await request.app.state.sweeper.trigger_sweep()
    return report.model_dump(mode="json")
