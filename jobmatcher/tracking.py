"""
Match session tracking.

A session moves ``pending -> in_progress -> completed | failed``. Every write
after creation goes through a conditional update that only applies while the
session is still active, so a stop request always wins over late writes from
the engine.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .errors import ErrorKind, sanitize_error_message
from .logger import get_logger
from .models import MatchProgress
from .storage import MatchStore

logger = get_logger()

ProgressCallback = Callable[[MatchProgress], None]


class SessionTracker:
    """Creates, updates and finalizes MatchSession records."""

    def __init__(self, store: MatchStore):
        self.store = store

    def create_match_session(
        self,
        job_ids: List[int],
        trigger_source: str,
        company_id: Optional[int] = None,
        status: str = "in_progress",
    ) -> str:
        session_id = self.store.insert_session(
            jobs_total=len(job_ids),
            trigger_source=trigger_source,
            company_id=company_id,
            status=status,
        )
        logger.info(
            "Match session created",
            session_id=session_id,
            trigger_source=trigger_source,
            jobs_total=len(job_ids),
        )
        return session_id

    def update_match_session_if_active(self, session_id: str, **fields: Any) -> bool:
        """
        Apply ``fields`` only if the session is still pending or in progress.

        Returns:
            True if the write applied, False if the session was already terminal
        """
        return self.store.update_session_if_active(session_id, fields)

    def finalize_match_session(
        self,
        session_id: str,
        succeeded: int,
        failed: int,
        total: Optional[int] = None,
    ) -> bool:
        """
        Write final totals and the terminal status.

        The session ends ``failed`` when every job failed, otherwise
        ``completed``. Nothing is written if a stop already finalized it.
        """
        if total is None:
            total = succeeded + failed
        status = "failed" if total > 0 and failed >= total else "completed"

        applied = self.update_match_session_if_active(
            session_id,
            status=status,
            jobs_completed=succeeded + failed,
            jobs_succeeded=succeeded,
            jobs_failed=failed,
            error_count=failed,
            completed_at=datetime.now(),
        )
        if applied:
            logger.info(
                "Match session finalized",
                session_id=session_id,
                status=status,
                succeeded=succeeded,
                failed=failed,
            )
        else:
            logger.warning("Match session already finalized, keeping stored totals", session_id=session_id)
        return applied

    def stop_match_session(self, session_id: str) -> bool:
        """Mark an active session as failed; counters keep their last values."""
        stopped = self.update_match_session_if_active(
            session_id,
            status="failed",
            completed_at=datetime.now(),
        )
        if stopped:
            logger.info("Match session stopped", session_id=session_id)
        return stopped

    def get_match_session_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_session_row(session_id)

    def is_session_active(self, session_id: str) -> bool:
        session = self.get_match_session_status(session_id)
        return session is not None and session["status"] in ("pending", "in_progress")

    def should_stop(self, session_id: str) -> bool:
        return not self.is_session_active(session_id)

    def log_match_success(
        self,
        session_id: str,
        job_id: int,
        score: float,
        attempt_count: int,
        duration_ms: int,
        model_used: str,
    ) -> None:
        self.store.insert_log(
            session_id=session_id,
            job_id=job_id,
            status="succeeded",
            score=score,
            attempt_count=attempt_count,
            duration_ms=duration_ms,
            model_used=model_used,
        )

    def log_match_failure(
        self,
        session_id: str,
        job_id: int,
        duration_ms: int,
        error_type: str,
        error_message: str,
        attempt_count: int,
        model_used: str,
    ) -> None:
        self.store.insert_log(
            session_id=session_id,
            job_id=job_id,
            status="failed",
            error_type=ErrorKind(error_type).value,
            error_message=sanitize_error_message(error_message),
            attempt_count=attempt_count,
            duration_ms=duration_ms,
            model_used=model_used,
        )

    def get_match_logs(self, session_id: str) -> List[Dict[str, Any]]:
        return self.store.list_logs(session_id)

    def list_match_sessions(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return self.store.list_sessions(limit=limit, offset=offset)


class ProgressTracker:
    """Live progress counters for one run; reports every change to a callback."""

    PHASES = ("queued", "matching", "completed")

    def __init__(self, total: int, on_progress: Optional[ProgressCallback] = None):
        self.total = total
        self.on_progress = on_progress
        self.phase = "matching"
        self.queue_position = 0
        self.completed = 0
        self.succeeded = 0
        self.failed = 0

    def _report(self) -> None:
        if not self.on_progress:
            return
        try:
            self.on_progress(self.get_stats())
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e))

    def set_queue_position(self, position: int) -> None:
        self.queue_position = position
        self._report()

    def set_phase(self, phase: str) -> None:
        if phase not in self.PHASES:
            raise ValueError(f"Unknown progress phase: {phase}")
        self.phase = phase
        self._report()

    def increment_completed(self, success: bool) -> None:
        self.completed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1
        self._report()

    def set_stats(self, completed: int, succeeded: int, failed: int) -> None:
        self.completed = completed
        self.succeeded = succeeded
        self.failed = failed
        self._report()

    def get_stats(self) -> MatchProgress:
        return MatchProgress(
            phase=self.phase,
            queue_position=self.queue_position,
            completed=self.completed,
            total=self.total,
            succeeded=self.succeeded,
            failed=self.failed,
        )

    def complete(self) -> None:
        self.phase = "completed"
        self._report()


def create_progress_tracker(total: int, on_progress: Optional[ProgressCallback] = None) -> ProgressTracker:
    return ProgressTracker(total, on_progress)
