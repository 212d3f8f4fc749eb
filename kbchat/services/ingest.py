"""
Ingest service: source descriptor -> clean text -> knowledge base
"""
from typing import Optional

import structlog

from kbchat.models.content import KnowledgeBase, RawContent
from kbchat.models.sources import effective_kind, source_platform
from kbchat.services.condenser import KnowledgeCondenser
from kbchat.services.config import Settings
from kbchat.services.errors import ExtractionError, KBChatError, LLMError
from kbchat.services.fetcher import ContentFetcher
from kbchat.services.normalizer import extract_text
from kbchat.services.semantic import SemanticExtractor
from kbchat.utils.metrics import extraction_ratio, ingestions, semantic_fallbacks

logger = structlog.get_logger()

NO_CONTENT_MESSAGE = (
    "No meaningful text content could be extracted from the website. "
    "The website might be using JavaScript to load content dynamically. "
    "Please try pasting the content manually or use a different source."
)


class IngestService:
    """Runs the whole ingestion pipeline for one source"""

    def __init__(
        self,
        settings: Settings,
        fetcher: ContentFetcher,
        semantic: SemanticExtractor,
        condenser: KnowledgeCondenser
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.semantic = semantic
        self.condenser = condenser

    async def ingest(self, source) -> KnowledgeBase:
        """
        Build the knowledge base for a source, or raise a KBChatError
        """
        kind = effective_kind(source)
        try:
            raw = await self.extract(source)
            if not raw.text.strip():
                raise ExtractionError("No content could be extracted. Please try again.")

            knowledge = await self.condenser.condense(raw.text, kind, source_platform(source))
            if not knowledge.strip():
                raise ExtractionError("The knowledge base is empty. Please try a different source.")

        except KBChatError as e:
            ingestions.labels(source_kind=kind.value, outcome="failure").inc()
            logger.error(
                "Ingestion failed",
                source_kind=kind.value,
                error_type=type(e).__name__,
                reason=e.reason
            )
            raise

        ingestions.labels(source_kind=kind.value, outcome="success").inc()
        logger.info(
            "Knowledge base ready",
            source_kind=kind.value,
            raw_length=len(raw.text),
            knowledge_length=len(knowledge)
        )
        return KnowledgeBase(
            text=knowledge,
            source_kind=kind,
            raw_length=len(raw.text),
            condensed=self.condenser.needs_model(raw.text, kind)
        )

    async def extract(self, source) -> RawContent:
        """Plain text for a source; markup is normalized here"""
        raw = await self.fetcher.fetch(source)
        if raw.format == "plain":
            return raw

        text = await self.text_from_markup(raw.text, raw.source_url or "")
        return raw.model_copy(update={"text": text, "format": "plain"})

    def needs_semantic_fallback(self, normalized: str, markup: str) -> bool:
        ratio = len(normalized) / len(markup) if markup else 0.0
        return (
            ratio < self.settings.SEMANTIC_TRIGGER_RATIO
            or len(normalized.strip()) < self.settings.SEMANTIC_MIN_LENGTH
        )

    async def text_from_markup(self, markup: str, url: str) -> str:
        """
        Structural/regex extraction, with model extraction when the page
        looks client-rendered.
        """
        normalized = extract_text(markup)
        ratio = len(normalized) / len(markup) if markup else 0.0
        extraction_ratio.observe(ratio)
        logger.info(
            "Extracted text from markup",
            url=url,
            text_length=len(normalized),
            markup_length=len(markup),
            ratio=round(ratio, 4)
        )

        if not self.needs_semantic_fallback(normalized, markup):
            return normalized

        logger.warning("Low extraction ratio, using model extraction", url=url, ratio=round(ratio, 4))
        semantic_text: Optional[str] = None
        try:
            semantic_text = await self.semantic.extract(markup, url)
        except LLMError as e:
            semantic_fallbacks.labels(outcome="error").inc()
            logger.error("Model extraction failed", url=url, reason=e.reason)

        if semantic_text is not None:
            if len(semantic_text.strip()) >= self.settings.SEMANTIC_MIN_LENGTH:
                semantic_fallbacks.labels(outcome="success").inc()
                return semantic_text
            semantic_fallbacks.labels(outcome="insufficient").inc()
            logger.warning("Model extraction returned insufficient content", length=len(semantic_text))

        if len(normalized.strip()) >= self.settings.MIN_NORMALIZED_LENGTH:
            logger.warning("Using limited extracted text", url=url, length=len(normalized))
            return normalized

        raise ExtractionError(NO_CONTENT_MESSAGE)
