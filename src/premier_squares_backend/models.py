from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from .utils import has_max_decimal_places

EVENT_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class ContestStatus(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    # Set by processes outside this service; no transition here leads to them.
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ContestRules(BaseModel):
    """Numeric ceilings applied to contest and winner input."""

    max_cost_per_square: float = Field(default=10000, gt=0)
    required_roster_size: int = Field(default=100, ge=1)
    max_name_length: int = Field(default=100, ge=1)
    max_event_id_length: int = Field(default=100, ge=1)


def _rules(info: ValidationInfo) -> ContestRules:
    context = info.context or {}
    return context.get("rules") or ContestRules()


class ContestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(alias="eventId", min_length=1, pattern=EVENT_ID_PATTERN)
    cost_per_square: float = Field(alias="costPerSquare", gt=0)

    @field_validator("event_id")
    @classmethod
    def _check_event_id_length(cls, value: str, info: ValidationInfo) -> str:
        limit = _rules(info).max_event_id_length
        if len(value) > limit:
            raise ValueError(f"eventId cannot exceed {limit} characters")
        return value

    @field_validator("cost_per_square", mode="before")
    @classmethod
    def _reject_booleans(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("costPerSquare must be a number")
        return value

    @field_validator("cost_per_square")
    @classmethod
    def _check_cost_ceiling(cls, value: float, info: ValidationInfo) -> float:
        ceiling = _rules(info).max_cost_per_square
        if value > ceiling:
            raise ValueError(f"costPerSquare cannot exceed ${ceiling:,.0f}")
        if not has_max_decimal_places(value, 2):
            raise ValueError("costPerSquare must have at most 2 decimal places")
        return value


class ContestNamesUpdate(BaseModel):
    names: List[Annotated[str, Field(min_length=1)]] = Field(min_length=1)

    @field_validator("names")
    @classmethod
    def _check_roster_limits(cls, names: List[str], info: ValidationInfo) -> List[str]:
        rules = _rules(info)
        if len(names) > rules.required_roster_size:
            raise ValueError(f"Cannot exceed {rules.required_roster_size} names")
        for index, name in enumerate(names):
            if len(name) > rules.max_name_length:
                raise ValueError(f"names[{index}] cannot exceed {rules.max_name_length} characters")
        return names


class WinnerCreate(BaseModel):
    name: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _check_name_length(cls, value: str, info: ValidationInfo) -> str:
        limit = _rules(info).max_name_length
        if len(value) > limit:
            raise ValueError(f"Name cannot exceed {limit} characters")
        return value


_FRIENDLY_MESSAGES = {
    "missing": "{field} is required",
    "string_too_short": "{field} cannot be empty",
    "string_type": "{field} must be a string",
    "string_pattern_mismatch": "{field} can only contain letters, numbers, hyphens, and underscores",
    "greater_than": "{field} must be a positive number",
    "float_type": "{field} must be a number",
    "float_parsing": "{field} must be a number",
    "finite_number": "{field} must be a finite number",
    "list_type": "{field} must be an array",
    "too_short": "At least one entry is required in {field}",
    "model_type": "Request body must be a JSON object",
    "model_attributes_type": "Request body must be a JSON object",
}


def validation_details(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into ``{field, message, value, type}`` entries."""
    details = []
    for error in exc.errors(include_url=False, include_context=False):
        field = ".".join(str(part) for part in error["loc"])
        kind = error["type"]
        if kind == "value_error":
            message = error["msg"].removeprefix("Value error, ")
        elif kind in _FRIENDLY_MESSAGES:
            message = _FRIENDLY_MESSAGES[kind].format(field=field or "body")
        else:
            message = error["msg"]
        details.append(
            {
                "field": field,
                "message": message,
                "value": None if kind == "missing" else error.get("input"),
                "type": kind,
            }
        )
    return details
