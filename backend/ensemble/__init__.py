"""
Self-tuning forecast ensemble and its canary rollout controller.

Importing the package gives access to the controller and its policy; the
leaf modules (accuracy, ledger, registry, population, statistics, tuner) are
imported directly by workers and routers.
"""

from ensemble.controller import (
    CycleSummary,
    Evaluated,
    ExperimentMetrics,
    Failed,
    RolloutController,
    Skipped,
)
from ensemble.policy import RolloutPolicy

__all__ = [
    "CycleSummary",
    "Evaluated",
    "ExperimentMetrics",
    "Failed",
    "RolloutController",
    "RolloutPolicy",
    "Skipped",
]
