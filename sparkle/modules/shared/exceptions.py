"""
Domain exceptions for the Sparkle gamification engine.

Purpose
-------
Structured, typed failures for every expected business condition. Services
raise these instead of returning error flags; the calling web layer maps
them onto transport-level responses.

Taxonomy
--------
- InsufficientFundsError      spend/transfer exceeds a currency balance
- InsufficientInventoryError  trade/purchase references items not owned
- InvalidStateError           entity state forbids the operation
- NotFoundError               referenced account/item/quest/trade missing
- SelfReferenceNotAllowedError  trade with oneself
- ConcurrencyConflictError    optimistic version mismatch; retry the call
- TradeNoLongerValidError     accepted trade failed execute-time checks
- ValidationError / InvalidOperationError  malformed input / forbidden action
- ConfigurationError          broken static configuration (fatal)

Every exception carries ``message``, ``details``, ``severity``,
``is_retryable`` and a stable ``error_code``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SparkleDomainException(Exception):
    """
    Base exception for all domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the whole operation can be retried
        error_code: Stable code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class InsufficientFundsError(SparkleDomainException):
    """
    Raised when a spend or transfer exceeds the account's balance.

    Args:
        currency: Currency kind ("sparkle_points" or "premium_points")
        required: Amount requested
        current: Balance at the time of the check
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, currency: str, required: int, current: int) -> None:
        self.currency = currency
        self.required = required
        self.current = current
        super().__init__(
            f"Insufficient {currency}: need {required:,}, have {current:,}",
            details={
                "currency": currency,
                "required": required,
                "current": current,
                "deficit": required - current,
            },
            error_code="INSUFFICIENT_FUNDS",
        )


class InsufficientInventoryError(SparkleDomainException):
    """Raised when an account does not hold enough of an item."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, item_id: str, required: int, current: int) -> None:
        self.item_id = item_id
        self.required = required
        self.current = current
        super().__init__(
            f"Insufficient inventory for {item_id}: need {required}, have {current}",
            details={"item_id": item_id, "required": required, "current": current},
            error_code="INSUFFICIENT_INVENTORY",
        )


class NotFoundError(SparkleDomainException):
    """
    Raised when a referenced entity does not exist.

    Args:
        resource_type: Type of resource (e.g., "Account", "Trade", "Quest")
        identifier: Identifier of the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(SparkleDomainException):
    """
    Raised when caller input fails validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class InvalidOperationError(SparkleDomainException):
    """
    Raised when an action violates a business rule.

    Example:
        >>> raise InvalidOperationError("respond_trade", "only the recipient may respond")
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str, error_code: Optional[str] = None) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=error_code or f"INVALID_{action.upper()}",
        )


class InvalidStateError(InvalidOperationError):
    """
    Raised when an entity's current state forbids the requested transition.

    Args:
        entity: Entity kind ("trade", "quest")
        state: Current state value
        action: Attempted action
    """

    def __init__(self, entity: str, state: str, action: str) -> None:
        self.entity = entity
        self.state = state
        super().__init__(
            action,
            f"{entity} is {state}",
            error_code="INVALID_STATE",
        )
        self.details.update({"entity": entity, "state": state})


class SelfReferenceNotAllowedError(InvalidOperationError):
    """Raised when an operation names the same account on both sides."""

    def __init__(self, action: str, account_id: int) -> None:
        self.account_id = account_id
        super().__init__(
            action,
            "an account cannot target itself",
            error_code="SELF_REFERENCE_NOT_ALLOWED",
        )
        self.details["account_id"] = account_id


class TradeNoLongerValidError(SparkleDomainException):
    """Raised when an accepted trade can no longer be covered by one of its parties."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, trade_id: int, reason: str, account_id: Optional[int] = None) -> None:
        self.trade_id = trade_id
        self.reason = reason
        self.account_id = account_id
        super().__init__(
            f"Trade {trade_id} is no longer valid: {reason}",
            details={"trade_id": trade_id, "reason": reason, "account_id": account_id},
            error_code="TRADE_NO_LONGER_VALID",
        )


class ConcurrencyConflictError(SparkleDomainException):
    """
    Raised when a concurrent write invalidated the row this operation read.

    The caller should retry the whole operation.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, resource: str, identifier: Optional[Any] = None) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"Concurrent modification of {resource}",
            details={"resource": resource, "identifier": identifier},
            error_code="CONCURRENCY_CONFLICT",
        )


class ConfigurationError(SparkleDomainException):
    """Raised when static configuration is missing or malformed."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(
            f"Invalid configuration at '{key}': {reason}",
            details={"key": key, "reason": reason},
            error_code="CONFIGURATION_ERROR",
        )


def is_transient_error(exc: Exception) -> bool:
    """True when the failed operation may succeed if retried."""
    if isinstance(exc, SparkleDomainException):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity for logging; unknown exceptions are ERROR."""
    if isinstance(exc, SparkleDomainException):
        return exc.severity
    return ErrorSeverity.ERROR
