"""
Input validation schemas using Pydantic v2
Validates records and change notifications coming from the persistent store
"""

import logging
import re
from typing import Any, Dict, Optional, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .comparators import coerce_mode
from .types import CATEGORIES, CHANGE_KINDS, ENTITY_TYPES, GENDERS, ScoringMode

logger = logging.getLogger(__name__)

# Store table names → entity types
TABLE_ENTITY_TYPES = {
    "athletes": "competitor",
    "competitors": "competitor",
    "workouts": "event",
    "events": "event",
    "scores": "result",
    "results": "result",
}

# ==================== RECORD MODELS ====================


class CompetitorModel(BaseModel):
    """Competitor (athlete) record"""

    id: int = Field(..., ge=0, description="Competitor identity")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    category: str = Field(
        "RX",
        validation_alias=AliasChoices("category", "division"),
        max_length=100,
        description="Category (RX, Scaled, Masters, Teens, ...)",
    )
    gender: Optional[str] = Field(None, description="'M', 'F' or unset")
    age: Optional[int] = Field(None, ge=0, le=150)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Any:
        """Sanitize display name"""
        if not isinstance(v, str):
            return v
        cleaned = InputSanitizer.sanitize_competitor_name(v)
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v: Any) -> Any:
        """Normalize known categories case-insensitively, keep unknown ones"""
        if v is None:
            return "RX"
        if not isinstance(v, str):
            return v
        v = InputSanitizer.sanitize_category(v)
        if len(v) == 0:
            raise ValueError("category cannot be empty")
        for known in CATEGORIES:
            if known.lower() == v.lower():
                return known
        return v

    @field_validator("gender", mode="before")
    @classmethod
    def validate_gender(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError("gender must be a string")
        v = v.strip().upper()
        if not v:
            return None
        if v in {"MALE", "MAN"}:
            v = "M"
        elif v in {"FEMALE", "WOMAN"}:
            v = "F"
        if v not in GENDERS:
            raise ValueError(f"gender must be one of {GENDERS}, got {v}")
        return v

    @field_validator("age", mode="before")
    @classmethod
    def validate_age(cls, v: Any) -> Any:
        # the original add-athlete form sends age as free text, "" when unset
        if isinstance(v, str):
            stripped = v.strip()
            if not stripped:
                return None
            if not stripped.isdigit():
                raise ValueError("age must be a whole number")
            return int(stripped)
        return v


class EventModel(BaseModel):
    """Scored event (workout) record"""

    id: int = Field(..., ge=0, description="Event identity")
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=2000)
    scoring_mode: ScoringMode = Field(
        ...,
        validation_alias=AliasChoices(
            "scoring_mode", "scoringMode", "scoreType", "scoretype", "score_type"
        ),
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        v = InputSanitizer.sanitize_string(v, 255)
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, str):
            return InputSanitizer.sanitize_string(v, 2000)
        return v

    @field_validator("scoring_mode", mode="before")
    @classmethod
    def validate_scoring_mode(cls, v: Any) -> ScoringMode:
        return coerce_mode(v)


class ResultModel(BaseModel):
    """Raw result of one competitor in one event"""

    id: int = Field(..., ge=0, description="Result identity")
    competitor_id: int = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices(
            "competitor_id", "competitorId", "athlete_id", "athleteId"
        ),
    )
    event_id: int = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("event_id", "eventId", "workout_id", "workoutId"),
    )
    value: str = Field(
        ...,
        max_length=32,
        validation_alias=AliasChoices("value", "score"),
        description="Raw value, e.g. '7:32' or '345'",
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: Any) -> Any:
        """Keep the raw string form; numbers are stringified. Over-long values
        are rejected by max_length rather than cut to a different number."""
        if isinstance(v, bool):
            raise ValueError("value must be a string or number")
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, str):
            return InputSanitizer.sanitize_string(v, None)
        return v


RECORD_MODELS: Dict[str, type[BaseModel]] = {
    "competitor": CompetitorModel,
    "event": EventModel,
    "result": ResultModel,
}


def validate_record(entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize a raw record into its canonical dict form.

    Raises:
        ValueError: unknown entity type or invalid record
    """
    model = RECORD_MODELS.get(entity_type)
    if model is None:
        raise ValueError(f"unknown entity type: {entity_type!r}")
    try:
        return model.model_validate(data).model_dump(mode="json")
    except ValueError as e:
        logger.warning(f"{entity_type} record validation failed: {e}")
        raise ValueError(f"Invalid {entity_type} record: {str(e)}")


def validate_draft(entity_type: str, draft: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a record that has no identity yet (the store assigns it).

    Raises:
        ValueError: unknown entity type or invalid draft
    """
    record = validate_record(entity_type, {**draft, "id": 0})
    record.pop("id", None)
    return record


FIELD_ALIASES: Dict[str, Dict[str, str]] = {
    "competitor": {"division": "category"},
    "event": {
        "scoringMode": "scoring_mode",
        "scoreType": "scoring_mode",
        "scoretype": "scoring_mode",
        "score_type": "scoring_mode",
    },
    "result": {
        "competitorId": "competitor_id",
        "athlete_id": "competitor_id",
        "athleteId": "competitor_id",
        "eventId": "event_id",
        "workout_id": "event_id",
        "workoutId": "event_id",
        "score": "value",
    },
}


def canonical_fields(entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename wire aliases to canonical field names (partial payloads allowed)."""
    aliases = FIELD_ALIASES.get(entity_type, {})
    out: Dict[str, Any] = {}
    for key, value in data.items():
        out[aliases.get(key, key)] = value
    return out


def coerce_identity(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            return None
        return int(stripped, 10)
    return None


# ==================== CHANGE EVENTS ====================


class ValidatedChangeEvent(BaseModel):
    """Change notification with normalized kind/entity type and checked payload"""

    kind: str = Field(
        ...,
        validation_alias=AliasChoices("kind", "eventType", "event_type", "type"),
        description="insert | update | delete",
    )
    entity_type: str = Field(
        ...,
        validation_alias=AliasChoices("entity_type", "entityType", "table"),
        description="competitor | event | result",
    )
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def unwrap_realtime_shape(cls, data: Any) -> Any:
        """Accept realtime payloads shaped {eventType, table, new, old}"""
        if not isinstance(data, dict) or "payload" in data:
            return data
        if "new" not in data and "old" not in data:
            return data
        data = dict(data)
        new_row = data.pop("new", None) or {}
        old_row = data.pop("old", None) or {}
        data["payload"] = new_row if new_row else old_row
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("kind must be a string")
        v = v.strip().lower()
        if v not in CHANGE_KINDS:
            raise ValueError(f"kind must be one of {CHANGE_KINDS}, got {v}")
        return v

    @field_validator("entity_type", mode="before")
    @classmethod
    def validate_entity_type(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("entity_type must be a string")
        v = v.strip().lower()
        v = TABLE_ENTITY_TYPES.get(v, v)
        if v not in ENTITY_TYPES:
            raise ValueError(f"entity_type must be one of {ENTITY_TYPES}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_payload(self) -> Self:
        """Every kind needs an identity; inserts need a complete record"""
        identity = coerce_identity(self.payload.get("id"))
        if identity is None:
            raise ValueError(f"{self.kind} {self.entity_type} requires integer payload id")

        if self.kind == "insert":
            self.payload = validate_record(self.entity_type, self.payload)
        else:
            # updates are validated after merging with the projected record
            self.payload = {**canonical_fields(self.entity_type, self.payload), "id": identity}
        return self

    @property
    def identity(self) -> int:
        return int(self.payload["id"])


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: str, max_length: int | None = 255) -> str:
        """Sanitize string input; `max_length=None` leaves length checks to the caller"""
        if not isinstance(value, str):
            value = str(value)
            return value if max_length is None else value[:max_length]

        # Strip whitespace
        value = value.strip()

        # Limit length
        if max_length is not None:
            value = value[:max_length]

        # Remove null bytes
        value = value.replace("\0", "")

        return value

    @staticmethod
    def sanitize_competitor_name(name: str) -> str:
        """Sanitize competitor name for display, keeping accented letters"""
        name = InputSanitizer.sanitize_string(name, 255)

        # Remove control characters and markup/shell special chars; keep letters, digits,
        # spaces, dashes, dots and apostrophes
        dangerous_chars = r'[<>{}[\]\\|;&$`"\*\x00-\x1f\x7f]'
        name = re.sub(dangerous_chars, "", name)

        return name.strip()

    @staticmethod
    def sanitize_category(category: str) -> str:
        """Sanitize category name"""
        return InputSanitizer.sanitize_string(category, 100)

    @staticmethod
    def validate_and_sanitize_change(change: dict) -> ValidatedChangeEvent:
        """
        Validate and sanitize a change notification dictionary

        Returns:
            ValidatedChangeEvent: Validated change event

        Raises:
            ValueError: If validation fails
        """
        try:
            return ValidatedChangeEvent.model_validate(change)
        except ValueError as e:
            logger.warning(f"Change event validation failed: {e}")
            raise ValueError(f"Invalid change event: {str(e)}")


# ==================== EXPORT ====================

__all__ = [
    "CompetitorModel",
    "EventModel",
    "ResultModel",
    "ValidatedChangeEvent",
    "InputSanitizer",
    "canonical_fields",
    "coerce_identity",
    "validate_draft",
    "validate_record",
]
