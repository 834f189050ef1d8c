"""
errors.py — Analytics Exceptions

Data problems (empty row sets, missing columns, zero variance) are never
raised; they produce neutral results. Only caller mistakes, such as asking
for an aggregation or model that does not exist, surface as exceptions.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base exception for analytics errors."""
    pass


class UnsupportedOptionError(AnalyticsError, ValueError):
    """Raised when a caller requests an unknown operation, period or model."""

    def __init__(self, option: str, value: object, allowed: list[str] | tuple[str, ...]):
        self.option = option
        self.value = value
        self.allowed = list(allowed)
        super().__init__(
            f"Unsupported {option}: {value!r}. Allowed: {', '.join(self.allowed)}"
        )
