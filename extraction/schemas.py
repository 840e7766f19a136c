"""
Extraction Schemas - Data models crossing the extraction engine boundary.

The engine is consumed as an opaque function. Whatever it returns is
normalised into ExtractedFields before scoring.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


URGENCY_LEVELS = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _coerce_amount(value: Any) -> Any:
    """Map textual null markers to None and numeric strings to float."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", "").lstrip("$")
        if text.lower() in ("", "none", "null"):
            return None
        return float(text)
    return value


class FieldValues(BaseModel):
    """The four extracted fields. Every field is nullable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Optional[str] = None
    category: Optional[str] = None
    urgency_level: Optional[str] = Field(default=None, alias="urgencyLevel")
    goal_amount: Optional[float] = Field(default=None, alias="goalAmount")

    @field_validator("name", "category", "urgency_level", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Any:
        """Treat empty strings as missing."""
        return _blank_to_none(v)

    @field_validator("goal_amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        """Accept numbers, numeric strings and 'none'."""
        return _coerce_amount(v)


class ExtractedFields(FieldValues):
    """
    Output of one extraction engine call.

    Never mutated after creation. urgency_score is the engine's raw
    urgency score when it reports one.
    """

    urgency_score: Optional[float] = Field(default=None, alias="urgencyScore")


class EngineConfig(BaseModel):
    """
    Explicit configuration handed to the engine on every call.

    Flags carry the same keys as the experiment environment overrides
    (e.g. USE_AMOUNT_V2), so engines never have to read os.environ.
    """

    model_config = ConfigDict(frozen=True)

    flags: Dict[str, str] = Field(default_factory=dict)

    def flag_enabled(self, key: str, default: bool = False) -> bool:
        value = self.flags.get(key)
        if value is None:
            return default
        return value.strip().lower() in ("1", "true", "yes", "on")

    def float_flag(self, key: str, default: float) -> float:
        value = self.flags.get(key)
        if value is None or not value.strip():
            return default
        return float(value)
