"""
Knowledge base condensation
"""
import re
from typing import Optional

import structlog

from kbchat.models.sources import SocialPlatform, SourceKind, describe_source
from kbchat.services.config import Settings
from kbchat.services.errors import ExtractionError, LLMError
from kbchat.services.llm import LLMService
from kbchat.utils.metrics import condense_paths

logger = structlog.get_logger()

# Sources whose extracted text is already clean enough to use as-is
WELL_STRUCTURED_KINDS = {SourceKind.LINK, SourceKind.DOCUMENT}


def clean_knowledge_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()


def condense_system_prompt(description: str) -> str:
    return f"""You are an AI assistant that processes knowledge bases. Your task is to analyze and structure the provided content from a {description}.

IMPORTANT INSTRUCTIONS:
- Extract ALL key information, topics, features, and details from the content
- Preserve concrete facts, names, dates, figures, prices, products and services exactly as written
- Keep the original structure (sections, lists, hierarchies) instead of paraphrasing it away
- Maintain context and relationships between different pieces of information
- Structure the knowledge base so a chatbot can answer questions accurately

Return a comprehensive, structured knowledge base that preserves all important information."""


class KnowledgeCondenser:
    """Turns extracted text into the knowledge base used to ground replies"""

    def __init__(self, llm: LLMService, settings: Settings):
        self.llm = llm
        self.settings = settings

    def needs_model(self, text: str, kind: SourceKind) -> bool:
        return not (
            len(text) <= self.settings.DIRECT_KB_MAX_LENGTH
            and kind in WELL_STRUCTURED_KINDS
        )

    def input_cap(self, kind: SourceKind) -> int:
        if kind == SourceKind.LINK:
            return self.settings.CONDENSE_LINK_CAP
        return self.settings.CONDENSE_DEFAULT_CAP

    async def condense(
        self,
        text: str,
        kind: SourceKind,
        platform: Optional[SocialPlatform] = None
    ) -> str:
        """
        Return knowledge base text. Model failures are raised as
        ExtractionError, never replaced by the raw text.
        """
        description = describe_source(kind, platform)
        logger.info("Condensing knowledge base", length=len(text), source=description)

        if not self.needs_model(text, kind):
            condense_paths.labels(path="direct").inc()
            logger.info("Using content directly, no model processing needed")
            return clean_knowledge_text(text)

        condense_paths.labels(path="model").inc()
        cap = self.input_cap(kind)
        content = text[:cap]
        if len(text) > cap:
            logger.warning("Content truncated for condensation", original=len(text), kept=cap)

        try:
            knowledge = await self.llm.complete(
                system=condense_system_prompt(description),
                user=(
                    f"Please process the following {description} and create a comprehensive "
                    f"knowledge base. Extract and preserve all important information:\n\n{content}"
                ),
                max_tokens=self.settings.CONDENSE_MAX_TOKENS,
                temperature=self.settings.CONDENSE_TEMPERATURE,
                call_site="condense"
            )
        except LLMError as e:
            raise ExtractionError(f"Failed to process knowledge base: {e.reason}") from e

        if not knowledge.strip():
            raise ExtractionError("Failed to process knowledge base: the model returned no content")

        logger.info("Knowledge base processed", original=len(text), processed=len(knowledge))
        return knowledge.strip()
