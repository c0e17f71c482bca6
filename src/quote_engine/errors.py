"""
Error types raised by the quote engine.

ValidationError means the selection is wrong, ConfigurationError means the
pricing document is. Neither is retryable.
"""
from typing import Iterable, Optional


class QuoteError(Exception):
    """Base class for every error raised while pricing a selection."""


class ValidationError(QuoteError):
    """A selection broke a business rule (ineligible add-on, bad installments...)."""

    def __init__(
        self,
        message: str,
        field: str,
        value=None,
        allowed: Optional[Iterable] = None,
    ):
        self.field = field
        self.value = value
        self.allowed = tuple(sorted(allowed, key=str)) if allowed is not None else None
        detail = f"{field}: {message}"
        if allowed is not None:
            detail += f" (allowed: {', '.join(str(a) for a in self.allowed)})"
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Field-level detail for the caller to display."""
        return {
            "error": "validation_error",
            "field": self.field,
            "value": self.value,
            "allowed": list(self.allowed) if self.allowed is not None else None,
            "message": str(self),
        }


class ConfigurationError(QuoteError):
    """The pricing configuration is malformed (tier gaps, missing frequency...)."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class StaleConfigError(ConfigurationError):
    """The caller asked for a config version that is no longer current."""

    def __init__(self, expected: str, current: str):
        self.expected = expected
        self.current = current
        super().__init__(f"requested pricing version '{expected}' but current is '{current}'", path="version")
