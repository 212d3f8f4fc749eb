"""
Ordered fallback chains: the first strategy that succeeds wins
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Sequence, Tuple, TypeVar

import structlog

from kbchat.models.content import ExtractionAttempt
from kbchat.services.errors import AggregateFetchError, FetchError
from kbchat.utils.metrics import track_fetch_attempt

logger = structlog.get_logger()

I = TypeVar("I")
O = TypeVar("O")


@dataclass(frozen=True)
class Strategy(Generic[I, O]):
    """A named retrieval step; raises FetchError when it cannot deliver"""
    name: str
    run: Callable[[I], Awaitable[O]]


async def run_strategies(
    strategies: Sequence[Strategy[I, O]],
    target: I
) -> Tuple[O, str, List[ExtractionAttempt]]:
    """
    Try each strategy once, in order, and return the first result.

    Returns (result, winning strategy name, attempts). Raises
    AggregateFetchError when every strategy failed.
    """
    attempts: List[ExtractionAttempt] = []

    for index, strategy in enumerate(strategies, start=1):
        logger.info(
            "Trying retrieval strategy",
            strategy=strategy.name,
            position=f"{index}/{len(strategies)}"
        )
        try:
            result = await strategy.run(target)
        except FetchError as e:
            logger.warning("Retrieval strategy failed", strategy=strategy.name, reason=e.reason)
            attempts.append(ExtractionAttempt(strategy=strategy.name, succeeded=False, reason=e.reason))
            track_fetch_attempt(strategy.name, succeeded=False)
            continue

        attempts.append(ExtractionAttempt(strategy=strategy.name, succeeded=True))
        track_fetch_attempt(strategy.name, succeeded=True)
        logger.info("Retrieval strategy succeeded", strategy=strategy.name)
        return result, strategy.name, attempts

    raise AggregateFetchError(attempts)
