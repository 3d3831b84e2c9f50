"""
Unit tests for domain exceptions and input validation.
"""

import pytest

from sparkle.core.validation.input_validator import InputValidator
from sparkle.modules.shared.exceptions import (
    ConcurrencyConflictError,
    ErrorSeverity,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    SelfReferenceNotAllowedError,
    TradeNoLongerValidError,
    ValidationError,
    get_error_severity,
    is_transient_error,
)


@pytest.mark.unit
class TestDomainExceptions:
    """Test error codes, details and severity."""

    def test_insufficient_funds_details(self):
        """The error should carry currency, required and current amounts."""
        error = InsufficientFundsError("sparkle_points", 100, 40)

        assert error.error_code == "INSUFFICIENT_FUNDS"
        assert error.details["required"] == 100
        assert error.details["current"] == 40
        assert "sparkle_points" in str(error)

    def test_not_found_code_uses_resource(self):
        error = NotFoundError("Trade", 12)

        assert error.error_code == "TRADE_NOT_FOUND"
        assert error.to_dict()["details"] == {"resource_type": "Trade", "identifier": 12}

    def test_invalid_state_is_an_invalid_operation(self):
        """Callers catching InvalidOperationError also see state errors."""
        error = InvalidStateError("trade", "completed", "respond_trade")

        assert error.error_code == "INVALID_STATE"
        assert error.details["state"] == "completed"
        assert error.action == "respond_trade"

    def test_self_reference_code(self):
        error = SelfReferenceNotAllowedError("propose_trade", 3)

        assert error.error_code == "SELF_REFERENCE_NOT_ALLOWED"
        assert error.details["account_id"] == 3

    def test_trade_no_longer_valid_names_offender(self):
        error = TradeNoLongerValidError(5, "account 2 holds 0 of gem, needs 1", 2)

        assert error.trade_id == 5
        assert error.account_id == 2
        assert error.error_code == "TRADE_NO_LONGER_VALID"

    def test_concurrency_conflicts_are_retryable(self):
        """Only conflicts are flagged as safe to retry."""
        assert is_transient_error(ConcurrencyConflictError("row"))
        assert not is_transient_error(ValidationError("amount", "bad"))
        assert not is_transient_error(RuntimeError("boom"))

    def test_severity_lookup(self):
        assert get_error_severity(ValidationError("amount", "bad")) is ErrorSeverity.INFO
        assert get_error_severity(ConcurrencyConflictError("row")) is ErrorSeverity.WARNING
        assert get_error_severity(RuntimeError("boom")) is ErrorSeverity.ERROR


@pytest.mark.unit
class TestInputValidator:
    """Test normalization and rejection of caller input."""

    def test_integer_accepts_integral_values(self):
        assert InputValidator.validate_integer("42", "amount") == 42
        assert InputValidator.validate_integer(7.0, "amount") == 7

    @pytest.mark.parametrize("value", [None, True, 1.5, "abc"])
    def test_integer_rejects_non_integers(self, value):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_integer(value, "amount")
        assert exc_info.value.field == "amount"

    def test_positive_integer_rejects_zero(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_positive_integer(0, "amount")

    def test_account_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_account_id(0)

    def test_choice_is_case_insensitive(self):
        assert InputValidator.validate_choice("XP", "metric", ["xp", "posts"]) == "xp"
        with pytest.raises(ValidationError):
            InputValidator.validate_choice("karma", "metric", ["xp", "posts"])

    def test_item_ids_are_lowercase_slugs(self):
        assert InputValidator.validate_item_id("badge_gold-star") == "badge_gold-star"
        with pytest.raises(ValidationError):
            InputValidator.validate_item_id("Badge Gold")

    def test_item_map(self):
        """None means no items; quantities must be positive."""
        assert InputValidator.validate_item_map(None, "offer_items") == {}
        assert InputValidator.validate_item_map({"gem": "2"}, "offer_items") == {"gem": 2}
        with pytest.raises(ValidationError):
            InputValidator.validate_item_map({"gem": 0}, "offer_items")
        with pytest.raises(ValidationError):
            InputValidator.validate_item_map(["gem"], "offer_items")
