"""Pytest fixtures for kbchat tests."""

import os
from typing import Callable, List
from unittest.mock import AsyncMock

import httpx
import pytest

# Keep local .env files and developer credentials out of the tests
for name in ("OPENAI_API_KEY", "ZYTE_API_KEY", "ZITE_API_KEY"):
    os.environ.pop(name, None)

from kbchat.models.content import KnowledgeBase
from kbchat.models.sources import SourceKind
from kbchat.services.config import Settings
from kbchat.services.llm import LLMService


class _Timer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClockScheduler:
    """Scheduler driven by advance() instead of wall-clock time"""

    def __init__(self):
        self.now = 0.0
        self.timers: List[_Timer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[_Timer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = sorted(
            (timer for timer in self.pending if timer.when <= self.now),
            key=lambda timer: timer.when
        )
        self.timers = [timer for timer in self.pending if timer not in due]
        for timer in due:
            timer.callback()


def mock_http_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by handler(request)"""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def settings():
    """Settings isolated from the environment, with a model key set."""
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="test-key",
        ZYTE_API_KEY=None,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def fake_llm():
    """Stand-in for LLMService; set complete.return_value/side_effect per test."""
    llm = AsyncMock(spec=LLMService)
    llm.configured = True
    llm.complete.return_value = "Model output"
    return llm


@pytest.fixture
def scheduler():
    return VirtualClockScheduler()


@pytest.fixture
def knowledge_base():
    return KnowledgeBase(
        text="Acme sells rockets. Opening hours are 9 to 5.",
        source_kind=SourceKind.LINK,
        raw_length=46,
        condensed=False,
    )


@pytest.fixture
def article_html():
    """A server-rendered page with a main region and page chrome."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
        <title>Acme Rockets</title>
        <style>body { color: red; }</style>
    </head>
    <body>
        <nav>Home | Products | Contact</nav>
        <main>
            <h1>Acme Rockets</h1>
            <p>Acme builds reusable rockets for small satellite operators.</p>
            <p>Launches are scheduled every second Tuesday from the coastal pad.</p>
        </main>
        <script>window.analytics = {"id": 42};</script>
        <footer>Copyright Acme</footer>
    </body>
    </html>
    """
