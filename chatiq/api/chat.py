import asyncio
import base64
import binascii
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from chatiq.api.deps import get_runtime
from chatiq.api.runtime import ChatRuntime
from chatiq.core.intents import DeleteSession, SelectSession, StartNewChat, SubmitMessage
from chatiq.models.chat import ImageAttachment
from chatiq.utils.logger import logger

router = APIRouter(prefix="/chat")


class ChatRequest(BaseModel):
    message: str = ""
    image: Optional[ImageAttachment] = None


def validate_image(image: Optional[ImageAttachment]):
    if image is None:
        return
    if not image.mime_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Please select a valid image file.")
    try:
        base64.b64decode(image.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image data must be base64-encoded.")


# --- State ---

@router.get("/state")
async def chat_state(runtime: ChatRuntime = Depends(get_runtime)):
    """Everything the page needs to render: user, sessions, messages, notices."""
    return runtime.state()


@router.get("/sessions")
async def list_sessions(runtime: ChatRuntime = Depends(get_runtime)):
    sessions = runtime.synchronizer.sessions
    return {
        "sessions": [s.model_dump() for s in sessions],
        "active_session_id": runtime.synchronizer.active_session_id,
    }


# --- Intents ---

@router.post("/messages")
async def send_message(chat_request: ChatRequest, runtime: ChatRuntime = Depends(get_runtime)):
    """
    Persist the user's turn (text and/or image), ask the model and persist
    its reply. A failed model call is answered with a stored bot error turn.
    """
    validate_image(chat_request.image)
    logger.info(f"📡 Chat received from {runtime.uid} (tab {runtime.tab_id})")
    outcome = await runtime.controller.dispatch(
        SubmitMessage(text=chat_request.message, image=chat_request.image)
    )

    if outcome.status == "ignored":
        raise HTTPException(status_code=400, detail="Message is empty.")
    if outcome.status == "busy":
        raise HTTPException(status_code=409, detail="A response is still pending.")
    if outcome.status == "failed":
        raise outcome.error

    return {
        "status": outcome.status,
        "session_id": outcome.session_id,
        "reply": outcome.reply,
        "error": outcome.error.message if outcome.error else None,
    }


@router.post("/sessions/{session_id}/select")
async def select_session(session_id: str, runtime: ChatRuntime = Depends(get_runtime)):
    await runtime.controller.dispatch(SelectSession(session_id))
    return runtime.state()


@router.post("/new")
async def new_chat(runtime: ChatRuntime = Depends(get_runtime)):
    await runtime.controller.dispatch(StartNewChat())
    return runtime.state()


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    confirm: bool = Query(False),
    runtime: ChatRuntime = Depends(get_runtime),
):
    """Permanently delete a chat session. The page must confirm with ?confirm=true."""
    deleted = await runtime.controller.dispatch(DeleteSession(session_id, confirmed=confirm))
    if not deleted:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed.")
    return runtime.state()


# --- SSE ---

async def event_generator(runtime: ChatRuntime):
    yield f"event: state\ndata: {json.dumps(runtime.state(), default=str)}\n\n"
    try:
        async for event in runtime.view.events():
            runtime.touch()
            yield f"event: {event['event']}\ndata: {json.dumps(event['data'], default=str)}\n\n"
    except asyncio.CancelledError:
        logger.info(f"SSE - Client disconnected for {runtime.uid} (tab {runtime.tab_id}).")
        raise


@router.get("/events")
async def stream_events(runtime: ChatRuntime = Depends(get_runtime)):
    """Server-Sent Events: live re-renders driven by the store listeners."""
    logger.info(f"SSE connection opened for {runtime.uid} (tab {runtime.tab_id})")
    return StreamingResponse(event_generator(runtime), media_type="text/event-stream")
