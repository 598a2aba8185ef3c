"""Shared context and helpers for the execution strategies."""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from pydantic import BaseModel

from ..config import MatcherConfig
from ..errors import ErrorKind, MatchError, is_rate_limit_error, is_server_error
from ..logger import get_logger
from ..models import CandidateProfile, StrategyResultItem
from ..provider import StructuredProvider
from ..queue import ConcurrencyQueue, QueueFactory
from ..retry import CircuitBreaker

logger = get_logger()

SINGLE = "single"
BULK = "bulk"
PARALLEL = "parallel"

ProgressCallback = Callable[[int, int, int, int], None]
ResultCallback = Callable[[int, StrategyResultItem], Union[None, Awaitable[None]]]
ShouldStopCallback = Callable[[], Union[bool, Awaitable[bool]]]
StrategyResultMap = Dict[int, StrategyResultItem]


@dataclass
class StrategyContext:
    """Everything a strategy needs to turn jobs into outcomes."""

    config: MatcherConfig
    provider: StructuredProvider
    model: str
    circuit_breaker: CircuitBreaker
    candidate_profile: CandidateProfile
    provider_options: Optional[Dict[str, Any]] = None
    on_progress: Optional[ProgressCallback] = None
    on_result: Optional[ResultCallback] = None
    should_stop: Optional[ShouldStopCallback] = None
    queue_factory: QueueFactory = ConcurrencyQueue


def select_strategy(config: MatcherConfig, job_count: int) -> str:
    if job_count == 1:
        return SINGLE
    if config.bulk_enabled:
        return BULK
    return PARALLEL


async def check_should_stop(ctx: StrategyContext) -> bool:
    if ctx.should_stop is None:
        return False
    stop = ctx.should_stop()
    if inspect.isawaitable(stop):
        stop = await stop
    return bool(stop)


async def report_result(ctx: StrategyContext, job_id: int, item: StrategyResultItem, strategy: str) -> None:
    """Hand one outcome to ``ctx.on_result``; its failures are logged, never raised."""
    if ctx.on_result is None:
        return
    try:
        outcome = ctx.on_result(job_id, item)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as e:
        logger.error(f"[{strategy}] Failed to report result", job_id=job_id, error=str(e))


def make_on_retry(config: MatcherConfig, label: str) -> Callable[[int, float, BaseException], Optional[float]]:
    """Retry observer that stretches the delay for server and rate-limit errors."""
    max_delay = config.backoff_max_delay_seconds

    def on_retry(attempt: int, delay: float, error: BaseException) -> Optional[float]:
        if is_server_error(error) or is_rate_limit_error(error):
            stretched = min(delay * 3, max_delay)
            logger.info(f"{label} retry {attempt}: server or rate limit error", delay_seconds=round(stretched, 2))
            return stretched
        logger.info(f"{label} retry {attempt} scheduled", delay_seconds=round(delay, 2), error=str(error))
        return None

    return on_retry


def coerce_result(data: Any, schema: Type[BaseModel], label: Any) -> Any:
    """Validate provider output that did not arrive as a ``schema`` instance."""
    if data is None:
        raise MatchError(f"No object generated for {label}", kind=ErrorKind.NO_OBJECT)
    if isinstance(data, schema):
        return data
    return schema.model_validate(data)


def report_progress(ctx: StrategyContext, completed: int, total: int, succeeded: int, failed: int, strategy: str) -> None:
    if ctx.on_progress is None:
        return
    try:
        ctx.on_progress(completed, total, succeeded, failed)
    except Exception as e:
        logger.error(f"[{strategy}] Progress callback failed", error=str(e))
