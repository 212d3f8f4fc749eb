"""
Ingest endpoints: create sessions from links, documents, profiles or pasted text
"""
import time
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
import structlog

from kbchat.models.chat import CreateSessionRequest, SessionView, SubmitSourceRequest
from kbchat.models.sources import DocumentSource
from kbchat.routers.common import error_response, get_store, session_view
from kbchat.services.errors import KBChatError, ValidationError
from kbchat.services.session import SessionController

logger = structlog.get_logger()
router = APIRouter(tags=["ingest"])


async def _ingest(controller: SessionController, source):
    start_time = time.time()
    logger.info(
        "Ingest request",
        session_id=controller.session_id,
        source_kind=source.kind
    )
    try:
        await controller.submit_source(source)
    except KBChatError as e:
        return error_response(e, session_id=controller.session_id)

    logger.info(
        "Ingest completed",
        session_id=controller.session_id,
        processing_time=time.time() - start_time
    )
    return session_view(controller)


@router.post("/sessions", response_model=SessionView, status_code=201)
async def create_session(request: CreateSessionRequest, req: Request):
    """
    Create a session, ingesting the source when one is given.
    On ingestion failure the session stays idle and its id is returned
    with the error so the client can retry (e.g. with pasted text).
    """
    controller = get_store(req).create()
    if request.source is None:
        return session_view(controller)
    return await _ingest(controller, request.source)


@router.post("/sessions/{session_id}/source", response_model=SessionView)
async def submit_source(session_id: str, request: SubmitSourceRequest, req: Request):
    """Submit (or resubmit after a failure) a source to an idle session"""
    controller = get_store(req).get(session_id)
    return await _ingest(controller, request.source)


@router.post("/sessions/upload", response_model=SessionView, status_code=201)
async def upload_document(
    req: Request,
    file: UploadFile = File(...),
    session_id: Optional[str] = Form(default=None)
):
    """Create (or reuse an idle) session from an uploaded PDF or Word document"""
    store = get_store(req)
    settings = req.app.state.settings

    content = await file.read()
    if not content:
        raise ValidationError("The uploaded file is empty.")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"The uploaded file is too large (limit {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB)."
        )

    source = DocumentSource(
        content=content,
        filename=file.filename or "",
        content_type=file.content_type
    )
    controller = store.get(session_id) if session_id else store.create()
    return await _ingest(controller, source)
