"""
Data models for extracted content and knowledge bases
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kbchat.models.sources import SourceKind


class ExtractionAttempt(BaseModel):
    """Outcome of one fetch/extract strategy"""
    strategy: str
    succeeded: bool
    reason: Optional[str] = None


class RawContent(BaseModel):
    """Text (or markup) produced by the fetch layer, with provenance"""
    text: str
    format: Literal["markup", "plain"] = "plain"
    strategy: str
    markup_length: Optional[int] = None
    source_url: Optional[str] = None
    attempts: List[ExtractionAttempt] = Field(default_factory=list)


class KnowledgeBase(BaseModel):
    """Condensed, chatbot-ready text grounding a chat session"""
    model_config = ConfigDict(frozen=True)

    text: str
    source_kind: SourceKind
    raw_length: int
    condensed: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("text")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("knowledge base text must not be empty")
        return v
