"""
Markup to plain text normalization
"""
import html
import re

from bs4 import BeautifulSoup
import structlog

logger = structlog.get_logger()

NON_CONTENT_TAGS = ["script", "style", "noscript", "iframe", "embed", "object"]
MAIN_REGION_SELECTOR = 'main, article, [role="main"]'
MIN_STRUCTURAL_LENGTH = 50

_BLOCK_PATTERNS = [
    re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE),
    re.compile(r"<noscript[^>]*>[\s\S]*?</noscript>", re.IGNORECASE),
]
_TAG_PATTERN = re.compile(r"<[^>]+>")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to one space and blank-line runs to one newline"""
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\n\s*\n", "\n", text)
    return text.strip()


def extract_text(markup: str) -> str:
    """
    Best-effort plain text from markup. Never raises.
    """
    if not markup or not markup.strip():
        return ""

    try:
        text = _extract_structural(markup)
    except Exception as e:
        logger.warning("HTML parsing failed, using regex extraction", error=str(e))
        return extract_text_with_regex(markup)

    if len(text) < MIN_STRUCTURAL_LENGTH:
        logger.info("Minimal text extracted, trying regex fallback", length=len(text))
        regex_text = extract_text_with_regex(markup)
        if len(regex_text) > len(text):
            text = regex_text

    return text


def _extract_structural(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")

    for element in soup(NON_CONTENT_TAGS):
        element.decompose()

    region = soup.select_one(MAIN_REGION_SELECTOR) or soup.body or soup
    return normalize_whitespace(region.get_text(separator=" "))


def extract_text_with_regex(markup: str) -> str:
    """Tag stripping without a parser, for markup the parser cannot handle"""
    text = markup
    for pattern in _BLOCK_PATTERNS:
        text = pattern.sub("", text)
    text = _TAG_PATTERN.sub(" ", text)
    text = html.unescape(text)
    return normalize_whitespace(text)
