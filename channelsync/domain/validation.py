"""Attribute value validation.

Values are stored as text. These helpers check a raw value against an
attribute definition's data type and rules, and optionally against a
channel value list discovered for the mapped taxonomy attribute.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from urllib.parse import urlparse

from channelsync.domain.state_machines import AttributeDataType, ValidationStatus

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ValueCheck:
    """Outcome of validating one value."""

    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def status(self) -> ValidationStatus:
        return ValidationStatus.VALID if self.is_valid else ValidationStatus.INVALID


def validate_value(
    value: str | None,
    data_type: AttributeDataType | str,
    rules: dict[str, Any] | None = None,
    enum_values: list[str] | None = None,
    allowed_values: list[str] | None = None,
) -> ValueCheck:
    """Validate a raw value for a data type.

    Args:
        value: Raw text value. ``None`` and empty strings always pass.
        data_type: Attribute data type.
        rules: Definition rules (``max_length``, ``min``, ``max``).
        enum_values: Allowed values for ``enum`` definitions.
        allowed_values: Channel value list; when non-empty the value must be in it.

    Returns:
        ValueCheck with any error messages.
    """
    check = ValueCheck()
    if value is None or value == "":
        return check

    rules = rules or {}
    data_type = AttributeDataType(data_type)

    if data_type == AttributeDataType.STRING:
        max_length = rules.get("max_length")
        if max_length is not None and len(value) > int(max_length):
            check.errors.append(f"Value exceeds maximum length of {max_length}")

    elif data_type == AttributeDataType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            check.errors.append("Value must be numeric")
        else:
            if "min" in rules and number < float(rules["min"]):
                check.errors.append(f"Value must be at least {rules['min']}")
            if "max" in rules and number > float(rules["max"]):
                check.errors.append(f"Value must not exceed {rules['max']}")

    elif data_type == AttributeDataType.BOOLEAN:
        if value.strip().lower() not in _TRUE_VALUES | _FALSE_VALUES:
            check.errors.append("Value must be a boolean")

    elif data_type == AttributeDataType.ENUM:
        if enum_values and value not in enum_values:
            check.errors.append(f"Value must be one of: {', '.join(enum_values)}")

    elif data_type == AttributeDataType.JSON:
        try:
            json.loads(value)
        except ValueError:
            check.errors.append("Value must be valid JSON")

    elif data_type == AttributeDataType.DATE:
        try:
            date.fromisoformat(value)
        except ValueError:
            check.errors.append("Value must be a valid date")

    elif data_type == AttributeDataType.URL:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            check.errors.append("Value must be a valid URL")

    if allowed_values and value not in allowed_values:
        check.errors.append("Value is not in the channel value list")

    return check
