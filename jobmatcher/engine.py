"""
Match engine: the entry point for running tracked match sessions.

The engine resolves configuration, attaches a session, builds one circuit
breaker per run, executes the match (serialized through the operation queue
when configured) and reconciles the final totals into the session record.
A stop request that finalized the session first always wins.
"""

from typing import Any, Dict, List, Optional

from .config import MatcherConfig, ensure_valid, load_matcher_config
from .errors import ErrorKind, MatchError, SessionError
from .executor import MatchResultMap, execute_match
from .logger import get_logger
from .models import MatchResult, MatchSessionResult
from .provider import StructuredProvider
from .queue import get_queue_position, get_queue_status, with_queue
from .retry import CircuitBreaker, create_circuit_breaker
from .storage import MatchStore
from .strategies.common import ProgressCallback
from .tracking import ProgressCallback as MatchProgressCallback
from .tracking import SessionTracker, create_progress_tracker

logger = get_logger()

REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class MatchEngine:
    """Runs match operations against one store and one AI provider."""

    def __init__(
        self,
        store: MatchStore,
        provider: StructuredProvider,
        config: Optional[MatcherConfig] = None,
        provider_name: Optional[str] = None,
    ):
        """
        Args:
            store: Store with jobs, profile, settings and sessions
            provider: Structured-output AI provider
            config: Fixed configuration; when omitted it is loaded from the
                settings table on every operation
            provider_name: Provider whose defaults apply when loading settings
        """
        self.store = store
        self.provider = provider
        self.provider_name = provider_name
        self.tracker = SessionTracker(store)
        self._config = config

    def load_config(self) -> MatcherConfig:
        if self._config is not None:
            return ensure_valid(self._config)
        return load_matcher_config(self.store, provider=self.provider_name)

    @staticmethod
    def _create_circuit_breaker(config: MatcherConfig) -> CircuitBreaker:
        return create_circuit_breaker(
            failure_threshold=config.circuit_breaker_threshold,
            reset_timeout=config.circuit_breaker_reset_timeout_seconds,
            half_open_max_calls=config.circuit_breaker_half_open_max_calls,
        )

    @staticmethod
    def _provider_options(config: MatcherConfig) -> Optional[Dict[str, Any]]:
        if config.reasoning_effort and config.model.startswith(REASONING_MODEL_PREFIXES):
            return {"reasoning_effort": config.reasoning_effort}
        return None

    def _persisted_result(self, session_id: str) -> MatchSessionResult:
        session = self.tracker.get_match_session_status(session_id)
        if session is None:
            raise SessionError(f"Match session {session_id} not found")
        return MatchSessionResult(
            session_id=session_id,
            total=session["jobs_total"],
            succeeded=session["jobs_succeeded"],
            failed=session["jobs_failed"],
        )

    def _attach_session(self, session_id: str) -> None:
        session = self.tracker.get_match_session_status(session_id)
        if session is None:
            raise SessionError(f"Match session {session_id} not found")
        if session["status"] == "pending":
            self.tracker.update_match_session_if_active(session_id, status="in_progress")

    def create_match_session(
        self,
        job_ids: List[int],
        trigger_source: str = "manual",
        company_id: Optional[int] = None,
    ) -> str:
        return self.tracker.create_match_session(job_ids, trigger_source, company_id)

    async def match_with_tracking(
        self,
        job_ids: List[int],
        trigger_source: str = "manual",
        company_id: Optional[int] = None,
        session_id: Optional[str] = None,
        on_progress: Optional[MatchProgressCallback] = None,
    ) -> MatchSessionResult:
        """
        Match jobs inside a persisted session.

        Args:
            job_ids: Jobs to match
            trigger_source: manual, scheduler, company_refresh or match_unmatched
            company_id: Optional company scope recorded on the session
            session_id: Existing session to attach to instead of creating one
            on_progress: Callback receiving MatchProgress snapshots

        Returns:
            Final totals; the stop-recorded totals if the session was stopped

        Raises:
            SessionError: if ``session_id`` does not exist
        """
        config = self.load_config()

        if not job_ids and session_id is None:
            return MatchSessionResult(session_id="", total=0, succeeded=0, failed=0)

        total = len(job_ids)
        if session_id is None:
            session_id = self.tracker.create_match_session(job_ids, trigger_source, company_id)
        else:
            self._attach_session(session_id)

        circuit_breaker = self._create_circuit_breaker(config)

        if not self.tracker.is_session_active(session_id):
            logger.info("Match session already finalized before start", session_id=session_id)
            return self._persisted_result(session_id)

        progress = create_progress_tracker(total, on_progress)
        logger.info(
            "Starting match session",
            session_id=session_id,
            jobs=total,
            bulk_enabled=config.bulk_enabled,
            serialize_operations=config.serialize_operations,
        )

        def on_strategy_progress(completed: int, _total: int, succeeded: int, failed: int) -> None:
            self.tracker.update_match_session_if_active(
                session_id,
                jobs_completed=completed,
                jobs_succeeded=succeeded,
                jobs_failed=failed,
                error_count=failed,
            )
            progress.set_stats(completed, succeeded, failed)

        def on_queue_position(position: int) -> None:
            if position > 0:
                progress.set_queue_position(position)
                progress.set_phase("queued")

        async def run() -> MatchResultMap:
            progress.set_phase("matching")
            return await execute_match(
                self.store,
                self.tracker,
                self.provider,
                config,
                job_ids,
                circuit_breaker,
                session_id=session_id,
                on_progress=on_strategy_progress,
                should_stop=lambda: self.tracker.should_stop(session_id),
                provider_options=self._provider_options(config),
            )

        try:
            results = await with_queue(config, run, on_queue_position)
        except Exception as e:
            logger.error("Match session failed", session_id=session_id, error=str(e))
            try:
                self.tracker.finalize_match_session(session_id, 0, total, total)
            except Exception as finalize_error:
                logger.error(
                    "Could not finalize failed session",
                    session_id=session_id,
                    error=str(finalize_error),
                )
            raise

        succeeded = sum(1 for r in results.values() if isinstance(r, MatchResult))
        failed = total - succeeded
        progress.complete()

        applied = self.tracker.finalize_match_session(session_id, succeeded, failed, total)
        logger.log_metrics_summary()
        if not applied:
            return self._persisted_result(session_id)

        return MatchSessionResult(session_id=session_id, total=total, succeeded=succeeded, failed=failed)

    async def match_single(self, job_id: int) -> MatchResult:
        """Match one job without a session; raises the job's error on failure."""
        config = self.load_config()
        results = await execute_match(
            self.store,
            self.tracker,
            self.provider,
            config,
            [job_id],
            self._create_circuit_breaker(config),
            provider_options=self._provider_options(config),
        )
        result = results.get(job_id)
        if result is None:
            raise MatchError(f"No result for job {job_id}", kind=ErrorKind.NO_OBJECT)
        if isinstance(result, BaseException):
            raise result
        return result

    async def match_bulk(
        self,
        job_ids: List[int],
        on_progress: Optional[ProgressCallback] = None,
    ) -> MatchResultMap:
        """Match several jobs without a session, through the operation queue."""
        config = self.load_config()

        async def run() -> MatchResultMap:
            return await execute_match(
                self.store,
                self.tracker,
                self.provider,
                config,
                job_ids,
                self._create_circuit_breaker(config),
                on_progress=on_progress,
                provider_options=self._provider_options(config),
            )

        return await with_queue(
            config,
            run,
            lambda position: logger.info("Bulk match queued", position=position),
        )

    async def match_unmatched_jobs(
        self,
        on_progress: Optional[MatchProgressCallback] = None,
    ) -> MatchSessionResult:
        """Match every job without a score, in a session created up front."""
        job_ids = self.get_unmatched_job_ids()
        if not job_ids:
            return MatchSessionResult(session_id="", total=0, succeeded=0, failed=0)

        logger.info("Found unmatched jobs", count=len(job_ids))
        session_id = self.tracker.create_match_session(job_ids, "match_unmatched", status="pending")
        return await self.match_with_tracking(
            job_ids,
            trigger_source="match_unmatched",
            session_id=session_id,
            on_progress=on_progress,
        )

    def get_unmatched_job_ids(self) -> List[int]:
        return self.store.get_unmatched_job_ids()

    def get_match_session_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.tracker.get_match_session_status(session_id)

    def stop_match_session(self, session_id: str) -> bool:
        return self.tracker.stop_match_session(session_id)

    def get_queue_status(self) -> Dict[str, Any]:
        config = self.load_config()
        status = get_queue_status(config)
        status["position"] = get_queue_position(config)
        return status
