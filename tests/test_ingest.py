"""Tests for the ingestion pipeline: fetch, normalize, model fallback, condense."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from kbchat.models.content import RawContent
from kbchat.models.sources import LinkSource, PastedTextSource, SourceKind
from kbchat.services.condenser import KnowledgeCondenser
from kbchat.services.errors import (
    AggregateFetchError,
    ConfigurationError,
    ExtractionError,
    LLMError,
)
from kbchat.services.fetcher import ContentFetcher
from kbchat.services.ingest import NO_CONTENT_MESSAGE, IngestService
from kbchat.services.semantic import SemanticExtractor
from tests.conftest import mock_http_client


def markup_page(text, script_padding=0):
    """A page whose visible text is `text`, padded with script bytes."""
    return (
        "<html><body><p>" + text + "</p>"
        "<script>" + "x" * script_padding + "</script></body></html>"
    )


def build_service(settings, llm, raw):
    fetcher = AsyncMock()
    if isinstance(raw, Exception):
        fetcher.fetch.side_effect = raw
    else:
        fetcher.fetch.return_value = raw
    return IngestService(
        settings,
        fetcher=fetcher,
        semantic=SemanticExtractor(llm, settings),
        condenser=KnowledgeCondenser(llm, settings),
    )


def markup_raw(markup):
    return RawContent(
        text=markup,
        format="markup",
        strategy="relay:1",
        markup_length=len(markup),
        source_url="https://example.com",
    )


@pytest.mark.asyncio
async def test_server_rendered_page_skips_model(settings, fake_llm):
    text = "Acme builds reusable rockets for satellites. " * 20
    service = build_service(settings, fake_llm, markup_raw(markup_page(text)))

    knowledge = await service.ingest(LinkSource(url="https://example.com"))

    fake_llm.complete.assert_not_called()
    assert knowledge.text == text.strip()
    assert knowledge.source_kind == SourceKind.LINK
    assert knowledge.condensed is False


@pytest.mark.asyncio
async def test_low_ratio_page_uses_model_extraction_on_capped_markup(settings, fake_llm):
    """200k chars of markup, about 2% visible text: the model sees the first 100k."""
    text = "word " * 800
    markup = markup_page(text, script_padding=200_000 - len(markup_page(text)))
    assert len(markup) == 200_000
    semantic_text = "Acme builds rockets and launches them every Tuesday. " * 12
    fake_llm.complete.return_value = semantic_text
    service = build_service(settings, fake_llm, markup_raw(markup))

    knowledge = await service.ingest(LinkSource(url="https://example.com"))

    fake_llm.complete.assert_called_once()
    kwargs = fake_llm.complete.call_args.kwargs
    assert kwargs["call_site"] == "extraction"
    assert kwargs["max_tokens"] == 8000
    assert kwargs["temperature"] == 0.3
    assert markup[:100_000] in kwargs["user"]
    assert markup[:100_001] not in kwargs["user"]
    assert knowledge.text == semantic_text.strip()


@pytest.mark.asyncio
async def test_short_page_triggers_model_even_with_good_ratio(settings, fake_llm):
    """Under 500 characters of text always tries the model."""
    text = "Acme builds rockets for small satellite operators worldwide."
    fake_llm.complete.return_value = "Model text about rockets. " * 30
    service = build_service(settings, fake_llm, markup_raw(markup_page(text)))

    knowledge = await service.ingest(LinkSource(url="https://example.com"))

    assert knowledge.text.startswith("Model text about rockets.")


@pytest.mark.asyncio
async def test_model_failure_degrades_to_normalized_text(settings, fake_llm):
    text = "Acme builds rockets for small satellite operators worldwide."
    fake_llm.complete.side_effect = LLMError("Language model returned HTTP 500")
    service = build_service(settings, fake_llm, markup_raw(markup_page(text)))

    knowledge = await service.ingest(LinkSource(url="https://example.com"))

    assert knowledge.text == text


@pytest.mark.asyncio
async def test_insufficient_model_output_degrades_to_normalized_text(settings, fake_llm):
    text = "Acme builds rockets for small satellite operators worldwide."
    fake_llm.complete.return_value = "Too short"
    service = build_service(settings, fake_llm, markup_raw(markup_page(text)))

    knowledge = await service.ingest(LinkSource(url="https://example.com"))

    assert knowledge.text == text


@pytest.mark.asyncio
async def test_empty_page_and_failed_model_is_no_content_error(settings, fake_llm):
    fake_llm.complete.side_effect = LLMError("timeout")
    service = build_service(settings, fake_llm, markup_raw(markup_page("Loading...", 5000)))

    with pytest.raises(ExtractionError) as exc_info:
        await service.ingest(LinkSource(url="https://example.com"))

    assert exc_info.value.reason == NO_CONTENT_MESSAGE


@pytest.mark.asyncio
async def test_missing_model_key_is_not_swallowed(settings, fake_llm):
    text = "Acme builds rockets for small satellite operators worldwide."
    fake_llm.complete.side_effect = ConfigurationError("Language model API key is not set.")
    service = build_service(settings, fake_llm, markup_raw(markup_page(text)))

    with pytest.raises(ConfigurationError):
        await service.ingest(LinkSource(url="https://example.com"))


@pytest.mark.asyncio
async def test_fetch_failure_propagates(settings, fake_llm):
    service = build_service(settings, fake_llm, AggregateFetchError([]))

    with pytest.raises(AggregateFetchError):
        await service.ingest(LinkSource(url="https://example.com"))
    fake_llm.complete.assert_not_called()


MARKDOWN_REPLY = (
    "### Hours\n"
    "- **Mon**: 9-5\n"
    "- **Sat**: *closed*\n\n"
    "1. Call us at `+1 555 0100`\n"
    "2. Or visit [our site](https://example.com)"
)


@pytest.mark.asyncio
@pytest.mark.parametrize("replaces,condensed", [(None, True), (SourceKind.LINK, False)])
async def test_markdown_reply_pasted_back_builds_knowledge_base(settings, fake_llm, replaces, condensed):
    """A responder reply pasted back as a source goes through the whole pipeline."""
    fake_llm.complete.return_value = MARKDOWN_REPLY
    service = IngestService(
        settings,
        fetcher=ContentFetcher(settings, http_client=mock_http_client(MagicMock())),
        semantic=SemanticExtractor(fake_llm, settings),
        condenser=KnowledgeCondenser(fake_llm, settings),
    )

    knowledge = await service.ingest(PastedTextSource(text=MARKDOWN_REPLY, replaces=replaces))

    assert knowledge.text.strip()
    assert "**Mon**: 9-5" in knowledge.text
    assert knowledge.condensed is condensed


@pytest.mark.asyncio
async def test_pasted_text_is_condensed_by_model(settings, fake_llm):
    fake_llm.complete.return_value = "  Structured knowledge about Acme.  "
    raw = RawContent(text="Acme sells rockets. Call us.", format="plain", strategy="pasted")
    service = build_service(settings, fake_llm, raw)

    knowledge = await service.ingest(PastedTextSource(text="Acme sells rockets. Call us."))

    assert knowledge.text == "Structured knowledge about Acme."
    assert knowledge.condensed is True
    assert knowledge.source_kind == SourceKind.PASTED_TEXT
    assert fake_llm.complete.call_args.kwargs["call_site"] == "condense"


@pytest.mark.asyncio
async def test_manual_paste_for_website_keeps_website_kind(settings, fake_llm):
    raw = RawContent(text="Acme sells rockets. Call us.", format="plain", strategy="pasted")
    service = build_service(settings, fake_llm, raw)

    knowledge = await service.ingest(
        PastedTextSource(text="Acme sells rockets. Call us.", replaces=SourceKind.LINK)
    )

    fake_llm.complete.assert_not_called()
    assert knowledge.source_kind == SourceKind.LINK
    assert knowledge.text == "Acme sells rockets. Call us."


def test_semantic_trigger_thresholds(settings, fake_llm):
    service = build_service(settings, fake_llm, None)

    assert service.needs_semantic_fallback("a" * 499, "a" * 600)
    assert not service.needs_semantic_fallback("a" * 500, "a" * 1000)
    assert service.needs_semantic_fallback("a" * 600, "a" * 20_000)
    assert service.needs_semantic_fallback("", "")
