"""
Domain subpackage for the metrics precalculation feature.
"""

from .errors import (
    CacheStoreError,
    MissingCredential,
    PrecalculationError,
    ProviderError,
    ProviderHardError,
    ProviderPending,
    ProviderRateLimited,
    UnknownRange,
)
from .models import (
    INDIVIDUALS_SUBJECT,
    CacheEntry,
    MetricsPayload,
    RangeSpec,
    ResultRecord,
    Subject,
    SubjectRecord,
    Tenant,
    TenantCredentials,
)

__all__ = [
    "INDIVIDUALS_SUBJECT",
    "CacheEntry",
    "CacheStoreError",
    "MetricsPayload",
    "MissingCredential",
    "PrecalculationError",
    "ProviderError",
    "ProviderHardError",
    "ProviderPending",
    "ProviderRateLimited",
    "RangeSpec",
    "ResultRecord",
    "Subject",
    "SubjectRecord",
    "Tenant",
    "TenantCredentials",
    "UnknownRange",
]
