"""
Experiments - Named, reversible configuration overrides.
"""

from .engine import (
    EXPERIMENT_REGISTRY,
    EvalConfig,
    ExperimentDefinition,
    ExperimentEngine,
    ExperimentInfo,
)

__all__ = [
    "EXPERIMENT_REGISTRY",
    "EvalConfig",
    "ExperimentDefinition",
    "ExperimentEngine",
    "ExperimentInfo",
]
