"""Prometheus metrics definitions and helpers

All helpers are no-ops unless ENABLE_PROMETHEUS is set.
"""
import logging
import time
from contextlib import contextmanager
from questhabit.config import ENABLE_PROMETHEUS

logger = logging.getLogger(__name__)


class ProgressionMetrics:
    """Container for all Prometheus metrics"""

    def __init__(self, enabled: bool = ENABLE_PROMETHEUS):
        if not enabled:
            logger.info("Prometheus metrics disabled")
            self._enabled = False
            return

        try:
            from prometheus_client import Counter, Histogram

            # Progression Metrics
            self.habit_completions_total = Counter(
                'questhabit_habit_completions_total',
                'Total habit completions recorded',
                ['difficulty']
            )

            self.xp_awarded_total = Counter(
                'questhabit_xp_awarded_total',
                'Total XP awarded',
                ['source']
            )

            self.level_ups_total = Counter(
                'questhabit_level_ups_total',
                'Total level ups'
            )

            self.achievements_unlocked_total = Counter(
                'questhabit_achievements_unlocked_total',
                'Total achievements unlocked',
                ['achievement_type']
            )

            self.quests_total = Counter(
                'questhabit_quests_total',
                'Quest lifecycle transitions',
                ['tier', 'transition']
            )

            self.streak_freezes_used_total = Counter(
                'questhabit_streak_freezes_used_total',
                'Total streak freezes consumed'
            )

            # Failure Metrics
            self.evaluation_failures_total = Counter(
                'questhabit_evaluation_failures_total',
                'Non-fatal quest/achievement evaluation failures',
                ['stage']
            )

            self.persistence_retries_total = Counter(
                'questhabit_persistence_retries_total',
                'Retried persistence calls',
                ['operation']
            )

            # Store Metrics
            self.store_call_duration_seconds = Histogram(
                'questhabit_store_call_duration_seconds',
                'Persistence call latency',
                ['operation'],
                buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
            )

            self._enabled = True
            logger.info("Prometheus metrics initialized")

        except ImportError:
            logger.error("prometheus-client not installed. Install with: pip install prometheus-client")
            self._enabled = False
        except Exception as e:
            logger.error(f"Failed to initialize Prometheus metrics: {e}", exc_info=True)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled"""
        return self._enabled


# Global metrics instance
metrics = ProgressionMetrics()


def record_completion(difficulty: str, xp: int) -> None:
    if not metrics.enabled:
        return
    metrics.habit_completions_total.labels(difficulty=difficulty).inc()
    metrics.xp_awarded_total.labels(source="completion").inc(xp)


def record_xp(source: str, xp: int) -> None:
    """Track XP from achievements and quest rewards"""
    if not metrics.enabled or xp <= 0:
        return
    metrics.xp_awarded_total.labels(source=source).inc(xp)


def record_level_up() -> None:
    if not metrics.enabled:
        return
    metrics.level_ups_total.inc()


def record_achievement(achievement_type: str) -> None:
    if not metrics.enabled:
        return
    metrics.achievements_unlocked_total.labels(achievement_type=achievement_type).inc()


def record_quest_transition(tier: str, transition: str) -> None:
    """Track quest transitions (activated, completed, claimed, expired)"""
    if not metrics.enabled:
        return
    metrics.quests_total.labels(tier=tier, transition=transition).inc()


def record_streak_freeze() -> None:
    if not metrics.enabled:
        return
    metrics.streak_freezes_used_total.inc()


def record_evaluation_failure(stage: str) -> None:
    if not metrics.enabled:
        return
    metrics.evaluation_failures_total.labels(stage=stage).inc()


def record_retry(operation: str) -> None:
    if not metrics.enabled:
        return
    metrics.persistence_retries_total.labels(operation=operation).inc()


@contextmanager
def track_store_call(operation: str):
    """Track persistence call latency"""
    if not metrics.enabled:
        yield
        return

    start_time = time.time()

    try:
        yield
    finally:
        duration = time.time() - start_time
        metrics.store_call_duration_seconds.labels(
            operation=operation
        ).observe(duration)
