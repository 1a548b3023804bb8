"""
Exceptions raised inside the precalculation engine.

Provider errors describe the outcome of a single provider attempt; the
metrics client turns them into terminal ResultRecords so they never
escape a fetch.
"""


class PrecalculationError(Exception):
    """Base exception for precalculation operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class UnknownRange(PrecalculationError, ValueError):
    """Range identifier is not one of the supported rolling ranges."""

    def __init__(self, range_name: str):
        super().__init__(f"Unknown range: {range_name}", operation="resolve", recoverable=False)
        self.range_name = range_name


class MissingCredential(PrecalculationError):
    """The tenant has no analytics credential for the requested subject."""

    def __init__(self, message: str):
        super().__init__(message, operation="credentials", recoverable=False)


class CacheStoreError(PrecalculationError):
    """Cache backend I/O or decoding failure."""


class ProviderError(PrecalculationError):
    """Base for analytics provider attempt outcomes."""


class ProviderRateLimited(ProviderError):
    """429 from the provider; ``wait_seconds`` is the hinted wait."""

    def __init__(self, wait_seconds: float):
        super().__init__(f"Rate limited, retry in {wait_seconds:.3f}s", operation="fetch")
        self.wait_seconds = wait_seconds


class ProviderPending(ProviderError):
    """Report still computing on the provider side."""

    def __init__(self, status: str | None):
        super().__init__(f"Report status '{status}'", operation="fetch")
        self.status = status


class ProviderHardError(ProviderError):
    """Non-retryable failure for this record."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, operation="fetch", recoverable=False)
        self.status_code = status_code
