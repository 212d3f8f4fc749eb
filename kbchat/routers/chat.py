"""
Chat endpoints: bounded conversation and the conversion funnel
"""
import time

from fastapi import APIRouter, Request, Response
import structlog

from kbchat.models.chat import LeadRequest, SendMessageRequest, SessionView
from kbchat.routers.common import get_store, session_view

logger = structlog.get_logger()
router = APIRouter(tags=["chat"])


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str, req: Request):
    """Current state of a session"""
    return session_view(get_store(req).get(session_id))


@router.post("/sessions/{session_id}/messages", response_model=SessionView)
async def send_message(session_id: str, request: SendMessageRequest, req: Request):
    """
    Handle one chat turn. Rejected with 409 once the turn limit is reached
    or while a previous turn is still pending.
    """
    start_time = time.time()
    controller = get_store(req).get(session_id)

    logger.info(
        "Chat request received",
        session_id=session_id,
        message_length=len(request.text),
        user_turns=controller.user_turn_count
    )
    await controller.send_message(request.text)

    logger.info(
        "Chat request completed",
        session_id=session_id,
        duration=time.time() - start_time,
        state=controller.state.value
    )
    return session_view(controller)


@router.post("/sessions/{session_id}/acknowledge", response_model=SessionView)
async def acknowledge_limit(session_id: str, req: Request):
    """User acknowledged the message limit; show the conversion screen"""
    controller = get_store(req).get(session_id)
    controller.acknowledge_limit()
    return session_view(controller)


@router.post("/sessions/{session_id}/lead", response_model=SessionView)
async def capture_lead(session_id: str, request: LeadRequest, req: Request):
    """Email capture on the conversion screen"""
    controller = get_store(req).get(session_id)
    controller.capture_lead(request.email)
    return session_view(controller)


@router.post("/sessions/{session_id}/restart", response_model=SessionView)
async def restart_session(session_id: str, req: Request):
    """Drop the knowledge base and transcript, keep the session id"""
    controller = get_store(req).get(session_id)
    controller.restart()
    return session_view(controller)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, req: Request):
    """User left: destroy the session"""
    get_store(req).delete(session_id)
    return Response(status_code=204)
