"""Parallel strategy: Single matches run through a bounded-concurrency queue."""

import time
from typing import List

from ..errors import MatchError
from ..logger import get_logger
from ..models import MatchJob, StrategyResultItem
from .common import (
    PARALLEL,
    StrategyContext,
    StrategyResultMap,
    check_should_stop,
    report_progress,
    report_result,
)
from .single import match_single_job

logger = get_logger()


async def run_parallel(ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    """
    Match every job with at most ``concurrency_limit`` provider calls in flight.

    Jobs skipped because of a stop request are absent from the returned map.
    """
    results: StrategyResultMap = {}
    if not jobs:
        return results

    config = ctx.config
    queue = ctx.queue_factory(config.concurrency_limit, config.inter_request_delay_seconds)
    total = len(jobs)
    counts = {"completed": 0, "succeeded": 0, "failed": 0}

    async def process(job: MatchJob) -> None:
        start = time.monotonic()
        try:
            # A failing stop check fails this job instead of dropping it.
            if await check_should_stop(ctx):
                return
            outcome = await match_single_job(ctx, job)
            item = StrategyResultItem(
                result=outcome.result,
                duration_ms=int((time.monotonic() - start) * 1000),
                attempt_count=outcome.attempt_count,
            )
        except Exception as e:
            attempt_count = getattr(e, "attempt_count", None) or 1
            item = StrategyResultItem(
                error=e,
                duration_ms=int((time.monotonic() - start) * 1000),
                attempt_count=attempt_count,
            )
            logger.warning(
                "Job match failed",
                job_id=job.id,
                error_type=e.kind.value if isinstance(e, MatchError) else None,
                error=str(e),
            )

        results[job.id] = item
        await report_result(ctx, job.id, item, PARALLEL)

        counts["completed"] += 1
        if item.succeeded:
            counts["succeeded"] += 1
        else:
            counts["failed"] += 1
        report_progress(ctx, counts["completed"], total, counts["succeeded"], counts["failed"], PARALLEL)

    for job in jobs:
        queue.add(lambda job=job: process(job))
    await queue.on_idle()

    logger.info(
        "Parallel strategy completed",
        succeeded=counts["succeeded"],
        failed=counts["failed"],
        total=total,
    )
    return results
