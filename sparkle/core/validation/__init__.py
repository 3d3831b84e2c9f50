"""Input validation for values entering the engine."""

from sparkle.core.validation.input_validator import InputValidator

__all__ = ["InputValidator"]
