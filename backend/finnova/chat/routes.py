"""FastAPI router for the advisor chat: snapshot, streamed send, and teardown."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from finnova.auth import get_current_identity
from finnova.chat.registry import SessionRegistry, get_session_registry
from finnova.chat.session import ChatSessionManager
from finnova.config import settings
from finnova.identity import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

# Strong references to in-flight sends; the event loop only keeps weak ones.
_running_sends: set[asyncio.Task] = set()


class ChatMessageOut(BaseModel):
    id: str
    role: str
    text: str
    created_at: str
    streaming: bool


class ChatStateResponse(BaseModel):
    status: str
    messages: list[ChatMessageOut]


class ChatSendRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)


def _require_gemini_key() -> None:
    if not settings.gemini_api_key:
        raise HTTPException(
            status_code=503,
            detail="AI advisor is unavailable because GEMINI_API_KEY is not configured.",
        )


@router.get("", response_model=ChatStateResponse)
async def get_chat(
    identity: Identity = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> ChatStateResponse:
    """Open (or resume) the caller's conversation and return its transcript."""
    _require_gemini_key()

    manager = await registry.activate(identity)
    return ChatStateResponse.model_validate(manager.snapshot())


@router.post("/messages")
async def send_message(
    payload: ChatSendRequest,
    identity: Identity = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> EventSourceResponse:
    """
    Submit one user turn and stream transcript snapshots as SSE.

    Event sequence: message (xN, one per transcript change) -> done
    """
    _require_gemini_key()

    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=422, detail="text must not be empty")

    manager = registry.get(identity.id)
    if manager is None:
        raise HTTPException(status_code=409, detail="Chat session is not ready")

    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def on_change(changed: ChatSessionManager) -> None:
        queue.put_nowait(changed.snapshot())

    manager.add_listener(on_change)
    pending = manager.start_send(text)
    if pending is None:
        manager.remove_listener(on_change)
        raise HTTPException(status_code=409, detail="Chat session is not ready")

    def on_done(task: asyncio.Task) -> None:
        _running_sends.discard(task)
        manager.remove_listener(on_change)
        queue.put_nowait(None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Chat send failed for %s", identity.id, exc_info=task.exception())

    # The send runs to completion even if the client disconnects mid-stream.
    task = asyncio.create_task(manager.stream_reply(pending))
    _running_sends.add(task)
    task.add_done_callback(on_done)

    return EventSourceResponse(_stream_snapshots(manager, queue))


async def _stream_snapshots(manager: ChatSessionManager, queue: asyncio.Queue):
    while True:
        snapshot = await queue.get()
        if snapshot is None:
            break
        yield {"event": "message", "data": json.dumps(snapshot)}

    yield {
        "event": "done",
        "data": json.dumps({"accepted": True, "status": manager.status.value}),
    }


@router.delete("", status_code=204)
async def end_chat(
    identity: Identity = Depends(get_current_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    await registry.deactivate(identity.id)
    return Response(status_code=204)
