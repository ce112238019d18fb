"""
Error taxonomy for the trade outcome engine.

ConfigurationError is fatal and never retried. ValidationError is raised
locally for bad caller input. DataUnavailableError marks a single entity
(trade, ticker, date range) that could not be processed; batch callers record
it and carry on. ProviderTransientError is retried at the fetch layer and
becomes DataUnavailableError once retries are exhausted.
"""


class OutcomeLabError(Exception):
    """Base exception for all engine errors."""
    pass


class ConfigurationError(OutcomeLabError):
    """Missing or inconsistent configuration (e.g. no trained model file)."""
    pass


class ValidationError(OutcomeLabError):
    """Caller supplied invalid input (over-selling, bad risk distance, bad rules)."""
    pass


class DataUnavailableError(OutcomeLabError):
    """No usable price history for a ticker or date range."""
    pass


class ProviderTransientError(OutcomeLabError):
    """Rate limit or network failure from a price provider; safe to retry."""
    pass
