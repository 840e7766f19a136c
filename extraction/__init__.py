"""
Extraction - The transcript field-extraction engine boundary.

The evaluation harness consumes an engine as an opaque, stateless
function. This package defines that contract and ships a small
rules-based reference engine.

Components:
- ExtractionEngine: Protocol every engine satisfies
- ExtractedFields: Engine output (name, category, urgency, goal amount)
- EngineConfig: Explicit per-call configuration flags
- RulesExtractionEngine: Reference keyword/regex engine
"""

from .schemas import EngineConfig, ExtractedFields, FieldValues, URGENCY_LEVELS
from .engine import (
    ExtractionEngine,
    load_engine,
    normalize_output,
    verify_engine_isolation,
)
from .rules_engine import RulesExtractionEngine

__all__ = [
    "EngineConfig",
    "ExtractedFields",
    "FieldValues",
    "URGENCY_LEVELS",
    "ExtractionEngine",
    "load_engine",
    "normalize_output",
    "verify_engine_isolation",
    "RulesExtractionEngine",
]
