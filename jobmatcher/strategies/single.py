"""Single strategy: one provider call per job, the unit the other strategies reuse."""

from dataclasses import dataclass

from ..errors import MatchError, classify_error
from ..logger import get_logger
from ..models import MatchJob, MatchResult
from ..prompts import SINGLE_MATCH_SYSTEM_PROMPT, build_single_match_prompt
from ..retry import retry_with_backoff, with_timeout
from .common import StrategyContext, coerce_result, make_on_retry

logger = get_logger()


@dataclass
class SingleMatchOutcome:
    result: MatchResult
    attempt_count: int


async def match_single_job(ctx: StrategyContext, job: MatchJob) -> SingleMatchOutcome:
    """
    Score one job against the candidate profile.

    Each attempt goes through the shared circuit breaker and is bounded by
    the configured timeout. The breaker records every attempt's outcome.

    Raises:
        MatchError: carrying ``attempt_count``; non-MatchError failures are
            wrapped with their classified kind
    """
    config = ctx.config
    prompt = build_single_match_prompt(job.title, job.description, job.requirements, ctx.candidate_profile)
    attempts = [0]

    def on_attempt(attempt: int) -> None:
        attempts[0] = attempt

    async def call_provider() -> MatchResult:
        generated = await ctx.provider.generate_structured(
            model=ctx.model,
            schema=MatchResult,
            system_prompt=SINGLE_MATCH_SYSTEM_PROMPT,
            user_prompt=prompt,
            provider_options=ctx.provider_options,
        )
        return coerce_result(generated.data, MatchResult, f"job {job.id}")

    async def attempt_once() -> MatchResult:
        return await ctx.circuit_breaker.execute(
            lambda: with_timeout(call_provider(), config.timeout_seconds, f"Match job {job.id}")
        )

    try:
        result = await retry_with_backoff(
            attempt_once,
            max_retries=config.max_retries,
            base_delay=config.backoff_base_delay_seconds,
            max_delay=config.backoff_max_delay_seconds,
            jitter=config.backoff_jitter_seconds,
            on_retry=make_on_retry(config, f"Job {job.id}"),
            on_attempt=on_attempt,
        )
    except Exception as e:
        error = e if isinstance(e, MatchError) else MatchError(str(e), kind=classify_error(e), cause=e)
        error.attempt_count = max(attempts[0], 1)
        if error is not e:
            raise error from e
        raise

    logger.debug("Job matched", job_id=job.id, score=result.score, attempts=attempts[0])
    return SingleMatchOutcome(result=result, attempt_count=max(attempts[0], 1))
