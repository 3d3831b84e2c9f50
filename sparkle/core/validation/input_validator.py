"""
Input validation layer.

Purpose
-------
Centralized type, bounds and format checks for every value crossing the
facade boundary (account ids, amounts, currency names, item maps). Business
rules (balances, ownership, state) are the services' concern.

Every failure is logged at debug level and raised as ``ValidationError``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, NoReturn, Optional, Sequence

from sparkle.core.logging.logger import get_logger
from sparkle.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

MAX_ACCOUNT_ID = 2**63 - 1
MAX_AMOUNT = 1_000_000_000
MAX_ITEM_STACK = 1_000_000
ITEM_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_\-:.]{0,99}$")


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={"field_name": field_name, "raw_value": repr(value), "reason": message},
    )
    raise ValidationError(field_name, message)


class InputValidator:
    """
    Stateless validators. Each returns the normalized value or raises
    ``ValidationError``.
    """

    # =========================================================================
    # INTEGER VALIDATION
    # =========================================================================

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
    ) -> int:
        """
        Convert ``value`` to int with optional inclusive bounds.

        Booleans and non-integral floats are rejected.
        """
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")
        if isinstance(value, bool):
            _raise_validation_error(field_name, value, "Must be a whole number, got a boolean")
        if isinstance(value, float) and not value.is_integer():
            _raise_validation_error(field_name, value, f"Must be a whole number, got {value}")

        try:
            int_value = int(value)
        except (ValueError, TypeError):
            _raise_validation_error(field_name, value, f"Must be a whole number, got '{value}'")

        if min_value is not None and int_value < min_value:
            _raise_validation_error(
                field_name, int_value, f"Must be at least {min_value}, got {int_value}"
            )
        if max_value is not None and int_value > max_value:
            _raise_validation_error(
                field_name, int_value, f"Cannot exceed {max_value}, got {int_value}"
            )

        return int_value

    @staticmethod
    def validate_positive_integer(
        value: Any,
        field_name: str,
        max_value: Optional[int] = MAX_AMOUNT,
    ) -> int:
        return InputValidator.validate_integer(value, field_name, min_value=1, max_value=max_value)

    @staticmethod
    def validate_non_negative_integer(
        value: Any,
        field_name: str,
        max_value: Optional[int] = MAX_AMOUNT,
    ) -> int:
        return InputValidator.validate_integer(value, field_name, min_value=0, max_value=max_value)

    @staticmethod
    def validate_account_id(value: Any, field_name: str = "account_id") -> int:
        return InputValidator.validate_integer(value, field_name, min_value=1, max_value=MAX_ACCOUNT_ID)

    # =========================================================================
    # STRING / CHOICE VALIDATION
    # =========================================================================

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> str:
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")

        str_value = str(value).strip()
        if min_length is not None and len(str_value) < min_length:
            _raise_validation_error(field_name, str_value, f"Must be at least {min_length} characters")
        if max_length is not None and len(str_value) > max_length:
            _raise_validation_error(field_name, str_value, f"Cannot exceed {max_length} characters")
        return str_value

    @staticmethod
    def validate_choice(value: Any, field_name: str, valid_choices: Sequence[str]) -> str:
        """Case-insensitive membership check; returns the lowercased choice."""
        str_value = str(getattr(value, "value", value)).lower().strip()
        if str_value not in {choice.lower() for choice in valid_choices}:
            _raise_validation_error(
                field_name,
                value,
                f"Invalid choice '{value}'. Must be one of: {', '.join(sorted(valid_choices))}",
            )
        return str_value

    @staticmethod
    def validate_item_id(value: Any, field_name: str = "item_id") -> str:
        str_value = InputValidator.validate_string(value, field_name, min_length=1, max_length=100)
        if not ITEM_ID_PATTERN.match(str_value):
            _raise_validation_error(field_name, value, "Item ids are lowercase slugs")
        return str_value

    # =========================================================================
    # COMPOSITE VALIDATION
    # =========================================================================

    @staticmethod
    def validate_item_map(value: Any, field_name: str) -> Dict[str, int]:
        """
        Validate an ``{item_id: quantity}`` mapping.

        ``None`` means no items. Quantities must be positive.
        """
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            _raise_validation_error(field_name, value, "Must be a mapping of item id to quantity")

        validated: Dict[str, int] = {}
        for raw_id, raw_qty in value.items():
            item_id = InputValidator.validate_item_id(raw_id, f"{field_name}.item_id")
            validated[item_id] = InputValidator.validate_positive_integer(
                raw_qty, f"{field_name}.{item_id}", max_value=MAX_ITEM_STACK
            )
        return validated
