"""
Content fetcher: resolves a source descriptor into raw content
"""
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from kbchat.models.content import RawContent
from kbchat.models.sources import (
    DocumentSource,
    LinkSource,
    PastedTextSource,
    SocialProfileSource,
    SourceKind,
)
from kbchat.services.config import Settings
from kbchat.services.documents import DocumentExtractor, detect_family
from kbchat.services.errors import (
    AuthenticatedBackendRequired,
    FetchError,
    ValidationError,
    one_line,
)
from kbchat.services.llm import describe_http_error
from kbchat.services.strategies import Strategy, run_strategies

logger = structlog.get_logger()

RELAY_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
MARKUP_ANCHORS = ("<html", "<body", "<!doctype")


def ensure_scheme(url: str) -> str:
    """Prefix bare hosts with https://"""
    target = url.strip()
    if not target.startswith(("http://", "https://")):
        target = f"https://{target}"
    return target


def has_markup_anchor(body: str) -> bool:
    """Reject JSON error envelopes and other non-HTML bodies returned by relays"""
    lowered = body.lower()
    return any(anchor in lowered for anchor in MARKUP_ANCHORS)


class ContentFetcher:
    """Turns any source descriptor into RawContent, or fails descriptively"""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        documents: Optional[DocumentExtractor] = None
    ):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT,
            follow_redirects=True
        )
        self.documents = documents or DocumentExtractor()
        self._handlers: Dict[SourceKind, Callable[..., Awaitable[RawContent]]] = {
            SourceKind.LINK: self.fetch_link,
            SourceKind.DOCUMENT: self.fetch_document,
            SourceKind.SOCIAL_PROFILE: self.fetch_social_profile,
            SourceKind.PASTED_TEXT: self.fetch_pasted_text,
        }
        missing = set(SourceKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No fetch handler for source kinds: {sorted(missing)}")

    async def fetch(self, source) -> RawContent:
        """Dispatch on the source variant"""
        return await self._handlers[SourceKind(source.kind)](source)

    # Link sources

    def link_strategies(self) -> List[Strategy[str, str]]:
        """Scraping backend first (when configured), then each relay in order"""
        strategies: List[Strategy[str, str]] = []
        if self.settings.zyte_enabled():
            strategies.append(Strategy("zyte", self.scrape_with_zyte))
        else:
            logger.info("Scraping backend key not found, using relays")

        for index, template in enumerate(self.settings.RELAY_URL_TEMPLATES, start=1):
            strategies.append(Strategy(f"relay:{index}", self._relay_strategy(template)))
        return strategies

    async def fetch_link(self, source: LinkSource) -> RawContent:
        if not source.url.strip():
            raise ValidationError("Please enter a website URL.")
        target_url = ensure_scheme(source.url)
        logger.info("Starting website fetch", url=target_url)

        markup, strategy, attempts = await run_strategies(self.link_strategies(), target_url)

        logger.info(
            "Fetched website markup",
            url=target_url,
            strategy=strategy,
            length=len(markup)
        )
        return RawContent(
            text=markup,
            format="markup",
            strategy=strategy,
            markup_length=len(markup),
            source_url=target_url,
            attempts=attempts
        )

    async def scrape_with_zyte(self, url: str) -> str:
        """Browser-rendered markup from the scraping backend"""
        try:
            response = await self.http_client.post(
                self.settings.ZYTE_API_URL,
                json={"url": url, "browserHtml": True},
                auth=(self.settings.ZYTE_API_KEY, ""),
                timeout=self.settings.SCRAPER_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise FetchError("zyte", f"Scraping backend request failed: {describe_http_error(e)}") from e

        if response.status_code >= 400:
            raise FetchError(
                "zyte",
                f"Scraping backend error: HTTP {response.status_code} - {one_line(response.text, 200)}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FetchError("zyte", "Scraping backend returned a non-JSON body") from e

        markup = data.get("browserHtml") if isinstance(data, dict) else None
        if not markup:
            raise FetchError("zyte", "Scraping backend response does not contain browserHtml content")
        if len(markup) < self.settings.MIN_MARKUP_LENGTH:
            raise FetchError(
                "zyte",
                f"Scraping backend returned insufficient HTML content ({len(markup)} characters)"
            )
        return markup

    def _relay_strategy(self, template: str) -> Callable[[str], Awaitable[str]]:
        async def fetch_via_relay(url: str) -> str:
            return await self.fetch_via_relay(template, url)
        return fetch_via_relay

    async def fetch_via_relay(self, template: str, url: str) -> str:
        """One passthrough relay; the body must look like an HTML document"""
        relay_url = template.format(url=quote(url, safe=""))
        name = relay_url.split("?")[0]
        try:
            response = await self.http_client.get(
                relay_url,
                headers={"Accept": RELAY_ACCEPT},
                timeout=self.settings.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise FetchError(name, f"{name}: {describe_http_error(e)}") from e

        if response.status_code >= 400:
            raise FetchError(name, f"{name}: HTTP {response.status_code} {response.reason_phrase}")

        body = response.text
        if len(body) <= self.settings.MIN_MARKUP_LENGTH:
            raise FetchError(name, f"{name}: content too short ({len(body)} characters)")
        if not has_markup_anchor(body):
            raise FetchError(name, f"{name}: returned non-HTML content ({one_line(body, 80)})")
        return body

    # Other sources

    async def fetch_document(self, source: DocumentSource) -> RawContent:
        family = detect_family(source.filename, source.content_type)
        logger.info(
            "Processing document",
            filename=source.filename,
            family=family,
            size=len(source.content)
        )
        text = self.documents.extract(source.content, family)
        return RawContent(text=text, format="plain", strategy=f"document:{family}")

    async def fetch_social_profile(self, source: SocialProfileSource) -> RawContent:
        logger.info("Social profile requested", platform=source.platform.value)
        raise AuthenticatedBackendRequired(source.platform.value)

    async def fetch_pasted_text(self, source: PastedTextSource) -> RawContent:
        if len(source.text.strip()) <= self.settings.PASTED_TEXT_MIN_LENGTH:
            raise ValidationError(
                "No content provided or content is too short. Please paste the content and try again."
            )
        return RawContent(text=source.text, format="plain", strategy="pasted")

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
