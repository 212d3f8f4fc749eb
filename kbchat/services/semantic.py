"""
Model-based text extraction for pages that structural parsing cannot read
"""
import structlog

from kbchat.services.config import Settings
from kbchat.services.llm import LLMService

logger = structlog.get_logger()

EXTRACTION_SYSTEM_PROMPT = """You are a web content extraction assistant. Your task is to extract ALL meaningful text content from the provided HTML page.

IMPORTANT INSTRUCTIONS:
- Extract ALL visible text content from the HTML
- Remove HTML tags, scripts, styles, and navigation elements
- Preserve the structure and meaning of the content
- Include all text from headings, paragraphs, lists, buttons, links, etc.
- Extract text from data attributes, meta tags, and other content sources
- For JavaScript-rendered content, extract text from script tags if it contains content
- Preserve important details like names, descriptions, features, services, etc.

Return only the extracted text content that would be useful for training a chatbot."""


class SemanticExtractor:
    """Asks the language model for the visible text of raw markup"""

    def __init__(self, llm: LLMService, settings: Settings):
        self.llm = llm
        self.settings = settings

    async def extract(self, markup: str, url: str) -> str:
        """
        Extract text from at most SEMANTIC_MARKUP_CAP characters of markup.
        Model failures propagate to the caller.
        """
        limited = markup[: self.settings.SEMANTIC_MARKUP_CAP]
        logger.info(
            "Sending markup to the model for extraction",
            url=url,
            markup_chars=len(limited),
            truncated=len(markup) > len(limited)
        )

        content = await self.llm.complete(
            system=EXTRACTION_SYSTEM_PROMPT,
            user=(
                f"Extract ALL meaningful text content from this HTML page (URL: {url}). "
                "The page may contain JavaScript-rendered content, so extract everything "
                f"you can find:\n\n{limited}"
            ),
            max_tokens=self.settings.EXTRACTION_MAX_TOKENS,
            temperature=self.settings.EXTRACTION_TEMPERATURE,
            call_site="extraction"
        )

        text = content.strip()
        logger.info("Model extraction finished", url=url, characters=len(text))
        return text
