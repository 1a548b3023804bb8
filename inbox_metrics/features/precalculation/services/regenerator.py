"""
Computes one (tenant, subject, range) CacheEntry.

With a prior entry, teammates that already have a success payload are
copied over as-is and only the remaining ones hit the provider
(partial repair). Without one, every teammate is fetched.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.domain import (
    CacheEntry,
    MissingCredential,
    RangeSpec,
    ResultRecord,
    Subject,
    SubjectRecord,
    Tenant,
    TenantCredentials,
)
from inbox_metrics.features.precalculation.repository.directory_repository import (
    Directory,
    DirectoryRepository,
)
from inbox_metrics.features.precalculation.services.metrics_client import MetricsClient, Sleep
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class Regenerator:
    def __init__(
        self,
        metrics_client: MetricsClient,
        directory: Directory = DirectoryRepository,
        *,
        inter_call_delay: float | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.metrics_client = metrics_client
        self.directory = directory
        self.inter_call_delay = (
            settings.PRECALC_INTER_CALL_DELAY_SECONDS if inter_call_delay is None else inter_call_delay
        )
        self._sleep = sleep
        self._clock = clock

    async def load_roster(self, tenant: Tenant, subject: Subject) -> list[SubjectRecord]:
        if subject.is_individuals:
            return await self.directory.list_individuals_roster(tenant.id)
        return await self.directory.list_department_roster(tenant.id, subject.name)

    async def compute(
        self,
        tenant: Tenant,
        subject: Subject,
        range_spec: RangeSpec,
        prior_entry: CacheEntry | None = None,
        *,
        credentials: TenantCredentials,
    ) -> CacheEntry | None:
        """
        Build a complete CacheEntry for the subject's current roster.

        Returns:
            CacheEntry, or None when the roster is empty (nothing to cache)

        Raises:
            MissingCredential: No credential configured for this subject
            DirectoryUnavailable: Roster could not be loaded
        """
        credential = credentials.key_for(subject)
        if not credential:
            kind = "individuals" if subject.is_individuals else "department"
            raise MissingCredential(f"No {kind} API key configured for tenant {tenant.slug}")

        roster = await self.load_roster(tenant, subject)
        if not roster:
            logger.info("No users found, nothing to cache", tenant=tenant.slug, subject=subject.name)
            return None

        reusable = prior_entry.successes_by_id() if prior_entry else {}
        to_fetch = sum(1 for record in roster if record.id not in reusable)

        logger.info(
            "Regenerating cache entry",
            tenant=tenant.slug,
            subject=subject.name,
            range=range_spec.name,
            mode="repair" if prior_entry else "full",
            roster_size=len(roster),
            to_fetch=to_fetch,
        )

        results: list[ResultRecord] = []
        calls_made = 0
        for index, record in enumerate(roster, start=1):
            previous = reusable.get(record.id)
            if previous is not None:
                results.append(previous)
                continue

            if calls_made:
                await self._sleep(self.inter_call_delay)

            logger.debug(
                "Fetching metrics",
                tenant=tenant.slug,
                subject=subject.name,
                position=f"{index}/{len(roster)}",
                record_name=record.name,
            )
            result = await self.metrics_client.fetch(
                record, range_spec, credential, credentials.endpoint, record_index=index
            )
            calls_made += 1
            results.append(result)

        return CacheEntry(
            subject=subject.name,
            range_name=range_spec.name,
            range_label=range_spec.label,
            range_start=range_spec.start,
            range_end=range_spec.end,
            generated_at=self._clock().isoformat(),
            total_records=len(roster),
            results=results,
        )
