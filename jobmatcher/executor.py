"""
Runs one match operation end to end: load jobs and the candidate profile,
pick a strategy, and persist every job's outcome as soon as it is known.
"""

import time
from typing import Any, Dict, List, Optional, Set, Union

from .config import MatcherConfig
from .errors import ErrorKind, MatchError, classify_error
from .logger import get_logger
from .models import MatchJob, MatchResult, StrategyResultItem
from .normalize import extract_requirements, html_to_text
from .provider import StructuredProvider
from .retry import CircuitBreaker
from .storage import MatchStore
from .strategies.bulk import run_bulk
from .strategies.common import (
    BULK,
    SINGLE,
    ProgressCallback,
    ShouldStopCallback,
    StrategyContext,
    StrategyResultMap,
    check_should_stop,
    report_progress,
    report_result,
    select_strategy,
)
from .strategies.parallel import run_parallel
from .strategies.single import match_single_job
from .tracking import SessionTracker

logger = get_logger()

MatchResultMap = Dict[int, Union[MatchResult, BaseException]]


def build_match_jobs(jobs_by_id: Dict[int, Dict[str, Any]], job_ids: List[int]) -> List[MatchJob]:
    """MatchJobs in request order, with requirements pulled from the plain-text description."""
    match_jobs = []
    for job_id in job_ids:
        job = jobs_by_id.get(job_id)
        if job is None:
            continue
        description = html_to_text(job.get("description"))
        match_jobs.append(MatchJob(
            id=job["id"],
            title=job["title"],
            description=description,
            requirements=extract_requirements(description),
        ))
    return match_jobs


class ResultPersister:
    """Writes each job's outcome exactly once."""

    def __init__(
        self,
        store: MatchStore,
        tracker: SessionTracker,
        session_id: Optional[str],
        model_used: str,
    ):
        self.store = store
        self.tracker = tracker
        self.session_id = session_id
        self.model_used = model_used
        self.persisted: Set[int] = set()

    def persist(self, job_id: int, item: StrategyResultItem) -> None:
        if job_id in self.persisted:
            return
        logger.record_match_attempt()

        if item.error is not None or item.result is None:
            error = item.error or MatchError("No result produced", kind=ErrorKind.NO_OBJECT)
            kind = classify_error(error)
            logger.record_match_failure(kind.value)
            if self.session_id:
                self.tracker.log_match_failure(
                    self.session_id,
                    job_id,
                    duration_ms=item.duration_ms,
                    error_type=kind.value,
                    error_message=str(error),
                    attempt_count=item.attempt_count or 1,
                    model_used=self.model_used,
                )
        else:
            logger.record_match_success()
            self.store.update_job_with_match_result(job_id, item.result)
            if self.session_id:
                self.tracker.log_match_success(
                    self.session_id,
                    job_id,
                    score=item.result.score,
                    attempt_count=item.attempt_count or 1,
                    duration_ms=item.duration_ms,
                    model_used=self.model_used,
                )
        self.persisted.add(job_id)

    def persist_realtime(self, job_id: int, item: StrategyResultItem) -> None:
        """Strategy result callback; a failed write is retried in the final pass."""
        try:
            self.persist(job_id, item)
        except Exception as e:
            logger.error("Failed to persist realtime result", job_id=job_id, error=str(e))


def _failed_item(message: str, kind: ErrorKind) -> StrategyResultItem:
    error = MatchError(message, kind=kind)
    error.attempt_count = 1
    return StrategyResultItem(error=error, duration_ms=0, attempt_count=1)


async def _run_single(ctx: StrategyContext, job: MatchJob) -> StrategyResultMap:
    if await check_should_stop(ctx):
        return {}

    start = time.monotonic()
    try:
        outcome = await match_single_job(ctx, job)
        item = StrategyResultItem(
            result=outcome.result,
            duration_ms=int((time.monotonic() - start) * 1000),
            attempt_count=outcome.attempt_count,
        )
    except Exception as e:
        logger.warning("Job match failed", job_id=job.id, error=str(e))
        item = StrategyResultItem(
            error=e,
            duration_ms=int((time.monotonic() - start) * 1000),
            attempt_count=getattr(e, "attempt_count", None) or 1,
        )

    await report_result(ctx, job.id, item, SINGLE)
    succeeded = 1 if item.succeeded else 0
    report_progress(ctx, 1, 1, succeeded, 1 - succeeded, SINGLE)
    return {job.id: item}


async def execute_match(
    store: MatchStore,
    tracker: SessionTracker,
    provider: StructuredProvider,
    config: MatcherConfig,
    job_ids: List[int],
    circuit_breaker: CircuitBreaker,
    session_id: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    should_stop: Optional[ShouldStopCallback] = None,
    provider_options: Optional[Dict[str, Any]] = None,
) -> MatchResultMap:
    """
    Match jobs against the stored candidate profile.

    Args:
        store: Store holding jobs, the profile and session records
        tracker: Session tracker receiving one log entry per job
        provider: Structured-output AI provider
        config: Resolved matcher configuration
        job_ids: Jobs to match; unknown ids fail with "Job with ID n not found"
        circuit_breaker: Breaker shared by every provider call of this run
        session_id: Session to log into, if any
        on_progress: Callback(completed, total, succeeded, failed)
        should_stop: Predicate checked before each job or batch
        provider_options: Extra request options for the provider

    Returns:
        Mapping of job id to its MatchResult or the exception it failed with.
        Jobs skipped because of a stop request are absent.
    """
    if not job_ids:
        return {}

    persister = ResultPersister(store, tracker, session_id, config.model)
    jobs_by_id = store.fetch_jobs(job_ids)
    missing_ids = [job_id for job_id in job_ids if job_id not in jobs_by_id]
    if missing_ids:
        logger.warning("Missing job ids", job_ids=missing_ids)

    profile = store.fetch_profile()
    strategy_results: StrategyResultMap = {}

    if profile is None:
        logger.error("No candidate profile found, failing every job", jobs=len(job_ids))
        for job_id in job_ids:
            if job_id not in missing_ids:
                strategy_results[job_id] = _failed_item("No profile found", ErrorKind.VALIDATION)
    else:
        match_jobs = build_match_jobs(jobs_by_id, job_ids)
        if match_jobs:
            strategy = select_strategy(config, len(match_jobs))
            logger.record_strategy(strategy)
            logger.info(
                f"Using {strategy} strategy",
                jobs=len(match_jobs),
                bulk_enabled=config.bulk_enabled,
            )
            ctx = StrategyContext(
                config=config,
                provider=provider,
                model=config.model,
                circuit_breaker=circuit_breaker,
                candidate_profile=profile,
                provider_options=provider_options,
                on_progress=on_progress,
                on_result=persister.persist_realtime,
                should_stop=should_stop,
            )
            if strategy == SINGLE:
                strategy_results = await _run_single(ctx, match_jobs[0])
            elif strategy == BULK:
                strategy_results = await run_bulk(ctx, match_jobs)
            else:
                strategy_results = await run_parallel(ctx, match_jobs)

    for job_id in missing_ids:
        strategy_results[job_id] = _failed_item(f"Job with ID {job_id} not found", ErrorKind.VALIDATION)

    results: MatchResultMap = {}
    for job_id, item in strategy_results.items():
        persister.persist(job_id, item)
        results[job_id] = item.result if item.succeeded else item.error
    return results
