"""
Helpers shared by the session routers
"""
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
import markdown

from kbchat.models.chat import ConversionView, ErrorResponse, MessageView, SessionState, SessionView
from kbchat.services.errors import (
    AggregateFetchError,
    ConfigurationError,
    ExtractionError,
    FetchError,
    KBChatError,
    SessionNotFound,
    SessionStateError,
    ValidationError,
)
from kbchat.services.session import SessionController, SessionStore


def get_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def status_for(exc: KBChatError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, SessionNotFound):
        return 404
    if isinstance(exc, SessionStateError):
        return 409
    if isinstance(exc, (FetchError, AggregateFetchError, ExtractionError)):
        return 422
    if isinstance(exc, ConfigurationError):
        return 503
    return 502


def error_response(exc: KBChatError, session_id: Optional[str] = None) -> JSONResponse:
    status_code = status_for(exc)
    body = ErrorResponse(
        error=exc.reason,
        status_code=status_code,
        manual_paste=isinstance(exc, (FetchError, AggregateFetchError, ExtractionError)),
    ).model_dump()
    if session_id:
        body["session_id"] = session_id
    return JSONResponse(status_code=status_code, content=body)


def render_markdown(text: str) -> str:
    return markdown.markdown(text, extensions=["extra", "sane_lists"])


def session_view(controller: SessionController) -> SessionView:
    """Snapshot of a session for rendering"""
    messages = [
        MessageView(
            id=message.id,
            text=message.text,
            html=render_markdown(message.text) if message.sender == "assistant" else None,
            sender=message.sender,
            timestamp=message.timestamp,
        )
        for message in controller.chat.messages
    ]

    conversion = None
    if controller.state == SessionState.CONVERTING:
        conversion = ConversionView(
            booking_url=controller.settings.BOOKING_URL,
            lead_captured=controller.lead_email is not None,
        )

    return SessionView(
        session_id=controller.session_id,
        state=controller.state,
        source_description=controller.source_description,
        messages=messages,
        user_turn_count=controller.user_turn_count,
        turns_remaining=controller.turns_remaining,
        turn_in_flight=controller.turn_in_flight,
        last_error=controller.last_error,
        conversion=conversion,
    )
