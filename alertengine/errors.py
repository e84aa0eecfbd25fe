"""
Error taxonomy for alert evaluation and indicator calculation.

Insufficient data is never an error: calculators return None and rules
return a not-triggered result. The exceptions below are raised for
misconfigured alerts and exceeded deadlines, and are caught at the
per-alert boundary of the alert processor.
"""


class AlertEngineError(Exception):
    """Base class for engine errors."""

    pass


class UnsupportedConditionError(AlertEngineError):
    """Raised when an alert references an unknown trigger type or condition."""

    pass


class UnknownIndicatorTypeError(AlertEngineError):
    """Raised when an alert or calculation references an unknown indicator."""

    pass


class AlertTimeoutError(AlertEngineError):
    """Raised when a single alert evaluation exceeds its deadline."""

    pass
