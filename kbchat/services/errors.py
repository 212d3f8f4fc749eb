"""
Error taxonomy for ingestion and chat
"""
from typing import List, Optional

from kbchat.models.content import ExtractionAttempt


def one_line(text: str, limit: int = 300) -> str:
    """Collapse an error payload into a single short line"""
    line = " ".join(str(text).split())
    if len(line) > limit:
        return line[: limit - 3] + "..."
    return line


class KBChatError(Exception):
    """Base class for every error surfaced to users"""

    def __init__(self, reason: str):
        self.reason = one_line(reason)
        super().__init__(self.reason)


class ConfigurationError(KBChatError):
    """A required credential or setting is missing"""


class ValidationError(KBChatError):
    """Malformed or unsupported input, rejected before any I/O"""


class FetchError(KBChatError):
    """A single retrieval strategy failed"""

    def __init__(self, strategy: str, reason: str):
        self.strategy = strategy
        super().__init__(reason)


class AuthenticatedBackendRequired(FetchError):
    """Social profiles cannot be fetched without an authenticated backend"""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(
            f"social:{platform}",
            f"{platform.capitalize()} scraping requires an authenticated backend. "
            "Please paste the profile content manually.",
        )


class AggregateFetchError(KBChatError):
    """Every retrieval strategy failed"""

    def __init__(self, attempts: List[ExtractionAttempt]):
        self.attempts = attempts
        last_reason: Optional[str] = None
        for attempt in attempts:
            if not attempt.succeeded and attempt.reason:
                last_reason = attempt.reason
        if last_reason:
            summary = f"All retrieval strategies failed. Last error: {last_reason}"
        else:
            summary = "All retrieval strategies failed. No content received."
        self.last_reason = last_reason
        super().__init__(
            f"{summary} The site may block server-side fetching; "
            "try a different source or paste the content manually."
        )


class ExtractionError(KBChatError):
    """A decoder or the model produced no usable text"""


class LLMError(KBChatError):
    """The language model call failed"""


class ResponseError(KBChatError):
    """A single chat turn could not be answered"""


class SessionStateError(KBChatError):
    """The session cannot accept the requested action in its current state"""


class TurnLimitReached(SessionStateError):
    """The session already used all of its user turns"""


class TurnInFlight(SessionStateError):
    """A previous turn is still waiting for its reply"""


class SessionNotFound(SessionStateError):
    """No active session with the given id"""
