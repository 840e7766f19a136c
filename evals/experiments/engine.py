"""
Experiment Engine - Scoped, reversible overrides for one evaluation run.

An experiment is a named set of engine flag overrides and config field
overrides. Activation returns a patched copy of the run config; engine
flags reach the engine explicitly through EngineConfig.

Flags are also exported to os.environ for engines that read the
environment. The original value of every touched key is backed up on
first write, and deactivate() restores it (deleting keys that were
previously unset). Use activated() to guarantee rollback on every exit
path, including exceptions.
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config import settings
from core.domain.fingerprinting import compute_sources_fingerprint
from core.logging import get_logger

from ..errors import InvalidExperimentError, UnknownExperimentError

logger = get_logger(__name__)


class EvalConfig(BaseModel):
    """Per-run tunables. Never mutated; experiments return patched copies."""

    model_config = ConfigDict(frozen=True)

    strict_pass_threshold: float = 0.95
    acceptable_pass_threshold: float = 0.85
    default_amount_tolerance: float = 0.10
    engine_flags: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> "EvalConfig":
        return cls(
            strict_pass_threshold=settings.strict_pass_threshold,
            acceptable_pass_threshold=settings.acceptable_pass_threshold,
            default_amount_tolerance=settings.default_amount_tolerance,
        )


OVERRIDABLE_FIELDS = {"strict_pass_threshold", "acceptable_pass_threshold", "default_amount_tolerance"}


class ExperimentDefinition(BaseModel):
    """A named, reversible set of overrides."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    description: str = "Custom experiment"
    env_overrides: Dict[str, str] = Field(default_factory=dict, alias="envOverrides")
    config_overrides: Dict[str, float] = Field(default_factory=dict, alias="configOverrides")

    @field_validator("env_overrides", mode="before")
    @classmethod
    def validate_env(cls, v: Any) -> Any:
        """Environment values are always strings."""
        if isinstance(v, dict):
            return {str(k): str(val).lower() if isinstance(val, bool) else str(val) for k, val in v.items()}
        return v

    @field_validator("config_overrides", mode="before")
    @classmethod
    def validate_config(cls, v: Any) -> Any:
        """Accept DEFAULT_AMOUNT_TOLERANCE style keys; reject unknown fields."""
        if not isinstance(v, dict):
            return v
        normalized = {str(k).lower(): val for k, val in v.items()}
        unknown = set(normalized) - OVERRIDABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return normalized


EXPERIMENT_REGISTRY: Dict[str, ExperimentDefinition] = {
    "amount_v2": ExperimentDefinition(
        description="Parse compound spoken numbers",
        env_overrides={"USE_AMOUNT_V2": "true"},
    ),
    "name_v2": ExperimentDefinition(
        description="Extended name patterns for introduction forms",
        env_overrides={"USE_NAME_V2": "true"},
    ),
    "urgency_threshold_032": ExperimentDefinition(
        description="Lower HIGH urgency threshold from 0.38 to 0.32",
        env_overrides={"URGENCY_HIGH_THRESHOLD_OVERRIDE": "0.32"},
    ),
    "urgency_threshold_028": ExperimentDefinition(
        description="Lower HIGH urgency threshold from 0.38 to 0.28",
        env_overrides={"URGENCY_HIGH_THRESHOLD_OVERRIDE": "0.28"},
    ),
    "category_emergency": ExperimentDefinition(
        description="Add EMERGENCY keyword list to category extraction",
        env_overrides={"USE_EMERGENCY_CATEGORY": "true"},
    ),
    "strict_name_reject": ExperimentDefinition(
        description="Reject captured names containing non-name words",
        env_overrides={"USE_STRICT_NAME_REJECT": "true"},
    ),
    "amount_tolerance_005": ExperimentDefinition(
        description="Tighten amount tolerance to 5%",
        config_overrides={"default_amount_tolerance": 0.05},
    ),
    "amount_tolerance_015": ExperimentDefinition(
        description="Loosen amount tolerance to 15%",
        config_overrides={"default_amount_tolerance": 0.15},
    ),
    "no_enhancements": ExperimentDefinition(
        description="Disable all enhancement flags (raw engine)",
        env_overrides={
            "USE_AMOUNT_V2": "false",
            "USE_NAME_V2": "false",
            "USE_EMERGENCY_CATEGORY": "false",
            "USE_STRICT_NAME_REJECT": "false",
        },
    ),
}


class ExperimentInfo(BaseModel):
    name: str
    description: str


class ExperimentEngine:
    """
    Activates experiments and guarantees their rollback.

    Args:
        experiments_dir: Directory of custom <name>.json definitions
        apply_environment: Also export flag overrides to os.environ
    """

    def __init__(
        self,
        experiments_dir: Optional[Path] = None,
        apply_environment: bool = True,
    ):
        self.experiments_dir = Path(experiments_dir or settings.experiments_dir)
        self.apply_environment = apply_environment

        self.active_experiments: List[ExperimentInfo] = []
        self.env_backup: Dict[str, Optional[str]] = {}
        self.config_overrides: Dict[str, float] = {}

    def resolve(self, name: str) -> ExperimentDefinition:
        """
        Look up an experiment in the registry, then on disk.

        Raises:
            UnknownExperimentError: If neither source defines it
            InvalidExperimentError: If the custom definition is malformed
        """
        if name in EXPERIMENT_REGISTRY:
            return EXPERIMENT_REGISTRY[name]

        custom_path = self.experiments_dir / f"{name}.json"
        if not custom_path.is_file():
            raise UnknownExperimentError(
                name, [e.name for e in self.list_experiments()], self.experiments_dir
            )
        try:
            with open(custom_path, "r", encoding="utf-8") as f:
                return ExperimentDefinition.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidExperimentError(name, custom_path, str(e)) from e

    def activate(self, names: Iterable[str], base_config: EvalConfig) -> EvalConfig:
        """
        Activate experiments in order and return the patched config.

        Every name is resolved before anything is mutated, so an unknown
        name leaves the environment untouched. Later experiments win on
        overlapping keys; the backup keeps the value from before the
        first write.
        """
        resolved: List[Tuple[str, ExperimentDefinition]] = [(n, self.resolve(n)) for n in names]

        flags = dict(base_config.engine_flags)
        field_updates: Dict[str, float] = {}

        for name, experiment in resolved:
            for key, value in experiment.env_overrides.items():
                if self.apply_environment:
                    if key not in self.env_backup:
                        self.env_backup[key] = os.environ.get(key)
                    os.environ[key] = value
                flags[key] = value

            field_updates.update(experiment.config_overrides)
            self.config_overrides.update(experiment.config_overrides)
            self.active_experiments.append(ExperimentInfo(name=name, description=experiment.description))

            logger.experiment_activated(
                name,
                sorted(experiment.env_overrides),
                sorted(experiment.config_overrides),
            )

        return base_config.model_copy(update={**field_updates, "engine_flags": flags})

    def deactivate(self) -> None:
        """Restore every backed-up environment variable and clear bookkeeping."""
        restored = sorted(self.env_backup)
        for key, original in self.env_backup.items():
            if original is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = original

        if self.active_experiments or restored:
            logger.experiments_deactivated([e.name for e in self.active_experiments], restored)

        self.env_backup = {}
        self.active_experiments = []
        self.config_overrides = {}

    @contextmanager
    def activated(self, names: Iterable[str], base_config: EvalConfig) -> Iterator[EvalConfig]:
        """Scoped activation: deactivate() runs on every exit path."""
        try:
            yield self.activate(names, base_config)
        finally:
            self.deactivate()

    def get_report_metadata(self) -> Dict[str, Any]:
        """Experiment section embedded in every report header."""
        return {
            "experiment_flags": [e.name for e in self.active_experiments],
            "experiment_details": [e.model_dump() for e in self.active_experiments],
            "config_overrides": dict(self.config_overrides),
        }

    def list_experiments(self) -> List[ExperimentInfo]:
        """Registered experiments followed by valid custom definitions."""
        experiments = [
            ExperimentInfo(name=name, description=exp.description)
            for name, exp in EXPERIMENT_REGISTRY.items()
        ]

        if self.experiments_dir.is_dir():
            for path in sorted(self.experiments_dir.glob("*.json")):
                if path.stem in EXPERIMENT_REGISTRY:
                    continue
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        definition = ExperimentDefinition.model_validate(json.load(f))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.custom_experiment_invalid(str(path), str(e))
                    continue
                experiments.append(ExperimentInfo(name=path.stem, description=definition.description))

        return experiments

    @staticmethod
    def compute_engine_fingerprint(source_paths: Iterable[Path]) -> str:
        """SHA256 over the engine's source files (see compute_sources_fingerprint)."""
        return compute_sources_fingerprint(source_paths)
