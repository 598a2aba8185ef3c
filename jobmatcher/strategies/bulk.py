"""
Bulk strategy: several jobs scored by one provider call.

Jobs are chunked into batches of ``batch_size``. A batch shares the retry,
timeout and circuit-breaker machinery of the Single strategy, with twice the
per-call timeout. Jobs the provider leaves out of an otherwise valid
response are retried one at a time through the Single strategy.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import List, Sequence

from ..errors import ErrorKind, MatchError, classify_error
from ..logger import get_logger
from ..models import BulkMatchItem, BulkMatchResponse, MatchJob, StrategyResultItem
from ..normalize import chunk_list
from ..prompts import BULK_MATCH_SYSTEM_PROMPT, build_bulk_match_prompt
from ..retry import retry_with_backoff, with_timeout
from .common import (
    BULK,
    StrategyContext,
    StrategyResultMap,
    check_should_stop,
    coerce_result,
    make_on_retry,
    report_progress,
    report_result,
)
from .single import match_single_job

logger = get_logger()


@dataclass
class BatchOutcome:
    response: BulkMatchResponse
    attempt_count: int


def validate_batch_response(items: Sequence[BulkMatchItem], batch: Sequence[MatchJob]) -> List[BulkMatchItem]:
    """
    Keep one result per job of the batch.

    Results with a missing or non-numeric job id, an id outside the batch,
    or a repeated id are dropped (the first occurrence wins).
    """
    batch_ids = {job.id for job in batch}
    seen = set()
    valid: List[BulkMatchItem] = []

    for item in items:
        job_id = getattr(item, "job_id", None)
        if not isinstance(job_id, int) or isinstance(job_id, bool):
            logger.warning("Bulk response has an invalid job id, ignoring", job_id=job_id)
            continue
        if job_id not in batch_ids:
            logger.warning("Bulk response has a job id outside the batch, ignoring", job_id=job_id)
            continue
        if job_id in seen:
            logger.warning("Bulk response repeats a job id, keeping the first", job_id=job_id)
            continue
        seen.add(job_id)
        valid.append(item)

    missing = sorted(batch_ids - seen)
    if missing:
        logger.warning("Bulk response is missing jobs", missing_job_ids=missing)
    return valid


async def _process_batch(ctx: StrategyContext, batch: List[MatchJob]) -> BatchOutcome:
    config = ctx.config
    prompt = build_bulk_match_prompt(batch, ctx.candidate_profile)
    label = f"Match batch of {len(batch)} jobs"
    attempts = [0]

    def on_attempt(attempt: int) -> None:
        attempts[0] = attempt

    async def call_provider() -> BulkMatchResponse:
        generated = await ctx.provider.generate_structured(
            model=ctx.model,
            schema=BulkMatchResponse,
            system_prompt=BULK_MATCH_SYSTEM_PROMPT,
            user_prompt=prompt,
            provider_options=ctx.provider_options,
        )
        return coerce_result(generated.data, BulkMatchResponse, label.lower())

    async def attempt_once() -> BulkMatchResponse:
        return await ctx.circuit_breaker.execute(
            lambda: with_timeout(call_provider(), config.timeout_seconds * 2, label)
        )

    try:
        response = await retry_with_backoff(
            attempt_once,
            max_retries=config.max_retries,
            base_delay=config.backoff_base_delay_seconds,
            max_delay=config.backoff_max_delay_seconds,
            jitter=config.backoff_jitter_seconds,
            on_retry=make_on_retry(config, "Batch"),
            on_attempt=on_attempt,
        )
    except Exception as e:
        error = e if isinstance(e, MatchError) else MatchError(str(e), kind=classify_error(e), cause=e)
        error.attempt_count = max(attempts[0], 1)
        if error is not e:
            raise error from e
        raise

    return BatchOutcome(response=response, attempt_count=max(attempts[0], 1))


async def run_bulk(ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    """
    Match jobs batch by batch.

    A stop request ends processing before the next batch. When the circuit
    breaker is open the whole batch fails immediately without a provider call.
    """
    results: StrategyResultMap = {}
    if not jobs:
        return results

    config = ctx.config
    total = len(jobs)
    counts = {"completed": 0, "succeeded": 0, "failed": 0}

    async def record(job_id: int, item: StrategyResultItem) -> None:
        results[job_id] = item
        await report_result(ctx, job_id, item, BULK)
        counts["completed"] += 1
        if item.succeeded:
            counts["succeeded"] += 1
        else:
            counts["failed"] += 1
        report_progress(ctx, counts["completed"], total, counts["succeeded"], counts["failed"], BULK)

    for batch in chunk_list(jobs, config.batch_size):
        if await check_should_stop(ctx):
            logger.info("Stop requested, skipping remaining batches", remaining=total - counts["completed"])
            break

        if not ctx.circuit_breaker.can_execute():
            logger.warning("Circuit breaker open, failing batch", batch_size=len(batch))
            for job in batch:
                error = MatchError(
                    "Circuit breaker open - too many failures",
                    kind=ErrorKind.CIRCUIT_BREAKER,
                )
                error.attempt_count = 1
                await record(job.id, StrategyResultItem(error=error, duration_ms=0, attempt_count=1))
            continue

        start = time.monotonic()
        try:
            outcome = await _process_batch(ctx, batch)
        except Exception as e:
            attempt_count = getattr(e, "attempt_count", None) or 1
            duration_ms = int((time.monotonic() - start) * 1000) // len(batch)
            logger.error(
                "Batch failed",
                error_type=classify_error(e).value,
                error=str(e),
                job_ids=[job.id for job in batch],
            )
            for job in batch:
                await record(job.id, StrategyResultItem(error=e, duration_ms=duration_ms, attempt_count=attempt_count))
        else:
            per_job_ms = int((time.monotonic() - start) * 1000) // len(batch)
            returned = set()
            for item in validate_batch_response(outcome.response.results, batch):
                returned.add(item.job_id)
                await record(
                    item.job_id,
                    StrategyResultItem(
                        result=item.to_result(),
                        duration_ms=per_job_ms,
                        attempt_count=outcome.attempt_count,
                    ),
                )

            for job in batch:
                if job.id in returned:
                    continue
                logger.info("Falling back to single match for omitted job", job_id=job.id)
                await record(job.id, await _match_omitted_job(ctx, job))

            logger.info("Batch completed", returned=len(returned), batch_size=len(batch))

        if counts["completed"] < total and config.inter_request_delay_ms > 0:
            await asyncio.sleep(config.inter_request_delay_seconds)

    return results


async def _match_omitted_job(ctx: StrategyContext, job: MatchJob) -> StrategyResultItem:
    start = time.monotonic()
    try:
        outcome = await match_single_job(ctx, job)
    except Exception as e:
        return StrategyResultItem(
            error=e,
            duration_ms=int((time.monotonic() - start) * 1000),
            attempt_count=getattr(e, "attempt_count", None) or 1,
        )
    return StrategyResultItem(
        result=outcome.result,
        duration_ms=int((time.monotonic() - start) * 1000),
        attempt_count=outcome.attempt_count,
    )
