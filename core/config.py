"""
Configuration management for the extraction evaluation harness.
Uses pydantic-settings for environment-based configuration.
"""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Harness settings."""

    # Datasets
    datasets_dir: Path = Path("eval_data/datasets")
    manifest_path: Path = Path("eval_data/datasets/manifest.json")

    # Outputs
    reports_dir: Path = Path("eval_data/reports")
    promotions_dir: Path = Path("eval_data/promotions")
    experiments_dir: Path = Path("eval_data/experiments")
    integrity_log_path: Path = Path("eval_data/logs/integrity_errors.log")

    # Scoring
    strict_pass_threshold: float = 0.95
    acceptable_pass_threshold: float = 0.85
    default_amount_tolerance: float = 0.10

    # Extraction engine (import path "module:attr")
    engine: str = "extraction.rules_engine:RulesExtractionEngine"
    engine_source_paths: List[Path] = []

    # Post-run gates
    pii_scan_enabled: bool = True

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
