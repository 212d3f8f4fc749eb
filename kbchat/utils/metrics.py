"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Histogram
import structlog

logger = structlog.get_logger()

# Define metrics
fetch_attempts = Counter(
    'kbchat_fetch_attempts_total',
    'Retrieval strategy attempts',
    ['strategy', 'outcome']
)

ingestions = Counter(
    'kbchat_ingestions_total',
    'Knowledge ingestion requests',
    ['source_kind', 'outcome']
)

semantic_fallbacks = Counter(
    'kbchat_semantic_fallbacks_total',
    'Model-based extraction fallbacks',
    ['outcome']
)

condense_paths = Counter(
    'kbchat_condense_total',
    'Knowledge base condensation by path',
    ['path']
)

chat_turns = Counter(
    'kbchat_chat_turns_total',
    'Chat turns by outcome',
    ['outcome']
)

conversions = Counter(
    'kbchat_conversions_total',
    'Sessions that reached the conversion state'
)

token_counter = Counter(
    'kbchat_tokens_total',
    'Total number of tokens used',
    ['model', 'call_site']
)

llm_duration = Histogram(
    'kbchat_llm_duration_seconds',
    'Language model call latency',
    ['call_site'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0]
)

extraction_ratio = Histogram(
    'kbchat_extraction_ratio',
    'Normalized text length divided by markup length',
    buckets=[0.01, 0.02, 0.05, 0.1, 0.2, 0.3, 0.5, 1.0]
)


def track_fetch_attempt(strategy: str, succeeded: bool):
    """Track one retrieval strategy outcome"""
    # relay:2 -> relay, keep label cardinality fixed
    fetch_attempts.labels(
        strategy=strategy.split(":")[0],
        outcome="success" if succeeded else "failure"
    ).inc()


def track_token_usage(tokens: int, model: str, call_site: str):
    """Track token usage"""
    token_counter.labels(model=model, call_site=call_site).inc(tokens)
    logger.info(
        "Tokens used",
        tokens=tokens,
        model=model,
        call_site=call_site
    )
