"""
Run-history health signals.

Stats cover the runs started inside a trailing window. Alerts are checked
in a fixed priority order and only the first that applies is reported:

  1. no_recent_success       no completed run inside the window
  2. consecutive_failures    the latest N finished runs all failed
  3. low_success_rate        completed / finished below threshold
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from sqlmodel import Session, select

from catalog_sync.models.sync import COMPLETED, STARTED, TERMINAL_STATUSES, SyncRun, utcnow

logger = logging.getLogger(__name__)

NO_RECENT_SUCCESS = "no_recent_success"
CONSECUTIVE_FAILURES = "consecutive_failures"
LOW_SUCCESS_RATE = "low_success_rate"


@dataclass(frozen=True)
class HealthStats:
    window_hours: int
    total_runs: int
    completed: int
    failed: int
    in_progress: int
    success_rate: float
    avg_duration_ms: Optional[float]
    consecutive_failures: int
    last_success_at: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AlertResult:
    should_alert: bool
    alert_type: Optional[str] = None
    message: Optional[str] = None


class HealthMonitor:
    def __init__(
        self,
        engine,
        *,
        success_rate_threshold: float = 0.8,
        consecutive_failure_threshold: int = 3,
        window_hours: int = 24,
        now_fn: Callable = utcnow,
    ):
        self.engine = engine
        self.success_rate_threshold = success_rate_threshold
        self.consecutive_failure_threshold = consecutive_failure_threshold
        self.window_hours = window_hours
        self.now_fn = now_fn

    def get_stats(self, window_hours: Optional[int] = None) -> HealthStats:
        hours = window_hours or self.window_hours
        cutoff = self.now_fn() - timedelta(hours=hours)
        with Session(self.engine) as s:
            runs = s.exec(
                select(SyncRun)
                .where(SyncRun.started_at >= cutoff)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            ).all()

        finished = [r for r in runs if r.status in TERMINAL_STATUSES]
        completed = [r for r in finished if r.status == COMPLETED]
        success_rate = len(completed) / len(finished) if finished else 0.0

        durations = [r.duration_ms for r in completed if r.duration_ms is not None]
        avg_duration = sum(durations) / len(durations) if durations else None

        streak = 0
        for r in finished:
            if r.status == COMPLETED:
                break
            streak += 1

        warnings: List[str] = []
        if not completed:
            warnings.append(f"No successful sync in the last {hours} hours")
        if streak >= self.consecutive_failure_threshold:
            warnings.append(f"{streak} consecutive sync failures")
        if finished and success_rate < self.success_rate_threshold:
            warnings.append(
                f"Success rate {success_rate:.0%} is below {self.success_rate_threshold:.0%}"
            )

        return HealthStats(
            window_hours=hours,
            total_runs=len(runs),
            completed=len(completed),
            failed=len(finished) - len(completed),
            in_progress=sum(1 for r in runs if r.status == STARTED),
            success_rate=success_rate,
            avg_duration_ms=avg_duration,
            consecutive_failures=streak,
            last_success_at=completed[0].completed_at.isoformat() if completed and completed[0].completed_at else None,
            warnings=warnings,
        )

    def check_and_alert(self) -> AlertResult:
        stats = self.get_stats()

        if stats.completed == 0:
            alert = AlertResult(
                True, NO_RECENT_SUCCESS,
                f"No successful sync in the last {stats.window_hours} hours",
            )
        elif stats.consecutive_failures >= self.consecutive_failure_threshold:
            alert = AlertResult(
                True, CONSECUTIVE_FAILURES,
                f"{stats.consecutive_failures} consecutive sync failures",
            )
        elif stats.success_rate < self.success_rate_threshold:
            alert = AlertResult(
                True, LOW_SUCCESS_RATE,
                f"Sync success rate is {stats.success_rate:.0%} over the last {stats.window_hours} hours",
            )
        else:
            return AlertResult(should_alert=False)

        logger.warning("Sync health alert [%s]: %s", alert.alert_type, alert.message)
        return alert
