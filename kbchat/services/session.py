"""
Bounded chat sessions: turn gating and the path to the conversion funnel
"""
import asyncio
import time
from typing import Callable, Dict, Optional, Protocol
from uuid import uuid4

import structlog

from kbchat.models.chat import ChatSession, Message, SessionState
from kbchat.models.content import KnowledgeBase
from kbchat.models.sources import describe_source, effective_kind, source_platform
from kbchat.services.config import Settings
from kbchat.services.errors import (
    KBChatError,
    ResponseError,
    SessionNotFound,
    SessionStateError,
    TurnInFlight,
    TurnLimitReached,
    ValidationError,
)
from kbchat.services.ingest import IngestService
from kbchat.services.responder import FALLBACK_REPLY, ConversationalResponder
from kbchat.utils.metrics import chat_turns, conversions

logger = structlog.get_logger()


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback after a delay; the returned handle can cancel it"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        return asyncio.get_running_loop().call_later(delay, callback)


def welcome_message(description: str) -> str:
    return (
        f"Hello! I'm your AI chatbot. I've been trained on your {description}. "
        "How can I help you today?"
    )


class SessionController:
    """
    Owns one knowledge base and one chat transcript.

    idle -> ingesting -> chatting -> limit_reached -> converting
    """

    def __init__(
        self,
        ingest_service: IngestService,
        responder: ConversationalResponder,
        settings: Settings,
        scheduler: Optional[Scheduler] = None,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or uuid4().hex
        self.ingest_service = ingest_service
        self.responder = responder
        self.settings = settings
        self.scheduler = scheduler or LoopScheduler()

        self.state = SessionState.IDLE
        self.knowledge_base: Optional[KnowledgeBase] = None
        self.source_description: Optional[str] = None
        self.chat = ChatSession()
        self.last_error: Optional[str] = None
        self.turn_in_flight = False
        self.lead_email: Optional[str] = None
        self._pending_conversion: Optional[Cancellable] = None

    @property
    def max_turns(self) -> int:
        return self.settings.MAX_USER_TURNS

    @property
    def user_turn_count(self) -> int:
        return self.chat.user_turn_count

    @property
    def turns_remaining(self) -> int:
        return max(self.max_turns - self.user_turn_count, 0)

    @property
    def busy(self) -> bool:
        return self.turn_in_flight or self.state == SessionState.INGESTING

    def limit_reached(self) -> bool:
        """The only place the turn cap is evaluated"""
        return self.user_turn_count >= self.max_turns

    def _transition(self, new_state: SessionState) -> None:
        if new_state == self.state:
            return
        logger.info(
            "Session state change",
            session_id=self.session_id,
            from_state=self.state.value,
            to_state=new_state.value
        )
        self.state = new_state
        if new_state == SessionState.CONVERTING:
            conversions.inc()

    async def submit_source(self, source) -> KnowledgeBase:
        """Ingest a source and open the chat; on failure return to idle"""
        if self.state != SessionState.IDLE:
            raise SessionStateError(
                f"A source can only be submitted to an idle session (state: {self.state.value})"
            )

        self._transition(SessionState.INGESTING)
        self.last_error = None
        try:
            knowledge_base = await self.ingest_service.ingest(source)
        except KBChatError as e:
            self.last_error = e.reason
            self._transition(SessionState.IDLE)
            raise

        self.knowledge_base = knowledge_base
        self.source_description = describe_source(effective_kind(source), source_platform(source))
        self.chat = ChatSession([Message.from_assistant(welcome_message(self.source_description))])
        self._transition(SessionState.CHATTING)
        return knowledge_base

    async def send_message(self, text: str) -> Message:
        """
        Process one user turn and return the assistant reply.

        The user message and its reply are appended together once the
        reply is resolved, so the turn count only advances after it.
        """
        if not text or not text.strip():
            raise ValidationError("Message must not be empty")

        if self.state in (SessionState.LIMIT_REACHED, SessionState.CONVERTING):
            chat_turns.labels(outcome="rejected").inc()
            raise TurnLimitReached("Message limit reached. No further messages are accepted.")
        if self.state != SessionState.CHATTING:
            raise SessionStateError(f"Session is not ready for chat (state: {self.state.value})")
        if self.turn_in_flight:
            raise TurnInFlight("Please wait for the current reply before sending another message.")
        if self.limit_reached():
            chat_turns.labels(outcome="rejected").inc()
            logger.info(
                "Message limit reached",
                session_id=self.session_id,
                user_turns=self.user_turn_count
            )
            self._transition(SessionState.LIMIT_REACHED)
            raise TurnLimitReached("Message limit reached. No further messages are accepted.")

        user_message = Message.from_user(text)
        self.turn_in_flight = True
        self.last_error = None
        try:
            try:
                reply_text = await self.responder.respond(text, self.knowledge_base.text)
                chat_turns.labels(outcome="answered").inc()
            except ResponseError as e:
                chat_turns.labels(outcome="degraded").inc()
                logger.error("Error getting bot response", session_id=self.session_id, reason=e.reason)
                self.last_error = e.reason
                reply_text = FALLBACK_REPLY

            reply = Message.from_assistant(reply_text)
            self.chat.append(user_message, reply)
        finally:
            self.turn_in_flight = False

        logger.info(
            "Turn completed",
            session_id=self.session_id,
            user_turns=self.user_turn_count,
            max_turns=self.max_turns
        )
        if self.limit_reached():
            self._schedule_conversion()
        return reply

    def _schedule_conversion(self) -> None:
        if self._pending_conversion is not None:
            return
        logger.info(
            "Reached message limit, scheduling conversion",
            session_id=self.session_id,
            delay=self.settings.CONVERSION_DELAY_SECONDS
        )
        self._pending_conversion = self.scheduler.call_later(
            self.settings.CONVERSION_DELAY_SECONDS,
            self._convert
        )

    def _convert(self) -> None:
        self._pending_conversion = None
        if self.state in (SessionState.CHATTING, SessionState.LIMIT_REACHED):
            self._transition(SessionState.CONVERTING)

    def _cancel_pending_conversion(self) -> None:
        if self._pending_conversion is not None:
            self._pending_conversion.cancel()
            self._pending_conversion = None

    def acknowledge_limit(self) -> None:
        """The user acknowledged the limit: go straight to conversion"""
        if self.state == SessionState.CONVERTING:
            return
        if self.state == SessionState.LIMIT_REACHED or (
            self.state == SessionState.CHATTING and self.limit_reached()
        ):
            self._cancel_pending_conversion()
            self._transition(SessionState.CONVERTING)
            return
        raise SessionStateError(f"Message limit not reached yet (state: {self.state.value})")

    def capture_lead(self, email: str) -> None:
        if self.state != SessionState.CONVERTING:
            raise SessionStateError("Contact details are collected once the conversation has ended")
        self.lead_email = email
        logger.info("Lead captured", session_id=self.session_id)

    def restart(self) -> None:
        """Discard knowledge base and transcript; refused while a reply or ingestion is pending"""
        if self.busy:
            raise SessionStateError("Please wait for the current request to finish before restarting.")
        self._cancel_pending_conversion()
        self.knowledge_base = None
        self.source_description = None
        self.chat = ChatSession()
        self.last_error = None
        self.lead_email = None
        self._transition(SessionState.IDLE)


class SessionStore:
    """In-memory registry of active sessions with idle expiry"""

    def __init__(
        self,
        factory: Callable[[], SessionController],
        ttl_seconds: int,
        clock: Callable[[], float] = time.monotonic
    ):
        self.factory = factory
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, SessionController] = {}
        self._last_seen: Dict[str, float] = {}

    def create(self) -> SessionController:
        self.purge_expired()
        controller = self.factory()
        self._sessions[controller.session_id] = controller
        self._last_seen[controller.session_id] = self.clock()
        logger.info("Session created", session_id=controller.session_id)
        return controller

    def get(self, session_id: str) -> SessionController:
        self.purge_expired()
        controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionNotFound(f"Session {session_id} not found or expired")
        self._last_seen[session_id] = self.clock()
        return controller

    def delete(self, session_id: str) -> None:
        controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionNotFound(f"Session {session_id} not found or expired")
        controller.restart()
        del self._sessions[session_id]
        self._last_seen.pop(session_id, None)
        logger.info("Session deleted", session_id=session_id)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [
            session_id for session_id, seen in self._last_seen.items()
            if now - seen > self.ttl_seconds and not self._sessions[session_id].busy
        ]
        for session_id in expired:
            self._sessions.pop(session_id).restart()
            self._last_seen.pop(session_id)
        if expired:
            logger.info("Expired idle sessions", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
