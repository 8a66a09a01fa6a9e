"""Canary rollout policy constants."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_FAMILY = "ensemble"
DEFAULT_MIN_EVAL_DAYS = 3.0
DEFAULT_METRIC_WINDOW_DAYS = 3
DEFAULT_MAE_THRESHOLD = 0.5  # percentage points of success rate
DEFAULT_RELIABILITY_THRESHOLD = 5.0  # percentage points of reliability


@dataclass(frozen=True)
class RolloutPolicy:
    """Thresholds and windows the rollout controller decides with."""

    family: str = DEFAULT_FAMILY
    min_eval_days: float = DEFAULT_MIN_EVAL_DAYS
    metric_window_days: int = DEFAULT_METRIC_WINDOW_DAYS
    mae_threshold: float = DEFAULT_MAE_THRESHOLD
    reliability_threshold: float = DEFAULT_RELIABILITY_THRESHOLD

    @classmethod
    def from_settings(cls, settings=None) -> "RolloutPolicy":
        if settings is None:
            from core.config import get_settings

            settings = get_settings()
        return cls(
            family=settings.experiment_family,
            min_eval_days=settings.experiment_min_eval_days,
            metric_window_days=settings.experiment_metric_window_days,
            mae_threshold=settings.experiment_mae_threshold,
            reliability_threshold=settings.experiment_reliability_threshold,
        )

    def should_rollout(self, mae_improvement: float, reliability_improvement: float) -> bool:
        """Either signal alone is enough to promote the canary."""
        return mae_improvement >= self.mae_threshold or reliability_improvement >= self.reliability_threshold
