"""
Precalculation job: walks every active tenant, subject and range, decides
from the cached entry whether it must be recomputed, and writes the new
entry through the cache store.

Processing is strictly sequential (tenants, then subjects, then ranges) to
keep provider usage per credential predictable. Failures are contained:
a failed combination is logged and the walk continues, a tenant whose
directory data cannot be read is skipped.
"""

import asyncio
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.domain import (
    INDIVIDUALS_SUBJECT,
    CacheEntry,
    CacheStoreError,
    RangeSpec,
    Subject,
    Tenant,
    TenantCredentials,
)
from inbox_metrics.features.precalculation.repository.cache_store import CacheStore, cache_key
from inbox_metrics.features.precalculation.repository.directory_repository import (
    Directory,
    DirectoryRepository,
)
from inbox_metrics.features.precalculation.services.metrics_client import Sleep
from inbox_metrics.features.precalculation.services.range_resolver import RangeResolver
from inbox_metrics.features.precalculation.services.regenerator import Regenerator, utc_now
from inbox_metrics.infrastructure.observability.logging import (
    bind_run_context,
    clear_run_context,
    get_logger,
)

logger = get_logger(__name__)


class Staleness(str, Enum):
    """Outcome of the staleness policy for one cached entry."""

    MISSING = "missing"
    HAS_ERRORS = "has_errors"
    OUTDATED = "outdated"
    FRESH = "fresh"
    FORCED = "forced"

    @property
    def needs_regeneration(self) -> bool:
        return self is not Staleness.FRESH

    @property
    def reuses_prior(self) -> bool:
        return self is Staleness.HAS_ERRORS


def evaluate_staleness(
    entry: CacheEntry | None,
    *,
    current_range: RangeSpec,
    today: date,
    resolver: RangeResolver,
) -> Staleness:
    """
    Decide whether ``entry`` must be recomputed.

    An entry with errors is repaired in place (prior successes reused) as
    long as its bounds still match the current range; once the range has
    moved on, its successes belong to a different period and the entry is
    recomputed from scratch.
    """
    if entry is None:
        return Staleness.MISSING

    same_bounds = (entry.range_start, entry.range_end) == (current_range.start, current_range.end)

    if entry.has_errors:
        return Staleness.HAS_ERRORS if same_bounds else Staleness.OUTDATED

    if resolver.business_date(entry.generated_at_dt) != today:
        return Staleness.OUTDATED

    return Staleness.FRESH


@dataclass(slots=True)
class RegenerationItem:
    """One (subject, range) pair requested for selective regeneration."""

    subject: str
    range_name: str


@dataclass(slots=True)
class RegenerationOutcome:
    subject: str
    range_name: str
    status: str  # "success" | "partial" | "error"
    total_records: int = 0
    errors: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "subject": self.subject,
            "range": self.range_name,
            "status": self.status,
            "total_records": self.total_records,
            "errors": self.errors,
        }
        if self.error:
            data["error"] = self.error
        return data


class PrecalculationMetrics:
    """Metrics tracking for one precalculation run."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = utc_now()
        self.tenants_processed = 0
        self.tenants_skipped = 0
        self.combinations_regenerated = 0
        self.combinations_repaired = 0
        self.combinations_skipped = 0
        self.combinations_empty = 0
        self.combinations_failed = 0
        self.records_total = 0
        self.records_failed = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_entry(self, entry: CacheEntry, repaired: bool):
        if repaired:
            self.combinations_repaired += 1
        else:
            self.combinations_regenerated += 1
        self.records_total += entry.total_records
        self.records_failed += entry.error_count

    def record_failure(self, tenant_slug: str, subject: str, range_name: str, error: str):
        self.combinations_failed += 1
        self.errors.append(
            {
                "tenant": tenant_slug,
                "subject": subject,
                "range": range_name,
                "error": error,
                "timestamp": utc_now().isoformat(),
            }
        )

    def finalize(self):
        self.total_duration_seconds = (utc_now() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "precalculation",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "tenants_processed": self.tenants_processed,
            "tenants_skipped": self.tenants_skipped,
            "combinations_regenerated": self.combinations_regenerated,
            "combinations_repaired": self.combinations_repaired,
            "combinations_skipped": self.combinations_skipped,
            "combinations_empty": self.combinations_empty,
            "combinations_failed": self.combinations_failed,
            "records_total": self.records_total,
            "records_failed": self.records_failed,
            "errors_count": len(self.errors),
        }


class PrecalculationJob:
    """
    Background job that keeps every (tenant, subject, range) cache entry current.
    """

    def __init__(
        self,
        regenerator: Regenerator,
        cache_store: CacheStore,
        directory: Directory = DirectoryRepository,
        resolver: RangeResolver | None = None,
        *,
        ranges: Sequence[str] | None = None,
        inter_range_delay: float | None = None,
        inter_item_delay: float | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.regenerator = regenerator
        self.cache_store = cache_store
        self.directory = directory
        self.resolver = resolver or RangeResolver()
        self.ranges = list(ranges) if ranges is not None else settings.range_names()
        self.inter_range_delay = (
            settings.PRECALC_INTER_RANGE_DELAY_SECONDS if inter_range_delay is None else inter_range_delay
        )
        self.inter_item_delay = (
            settings.PRECALC_INTER_ITEM_DELAY_SECONDS if inter_item_delay is None else inter_item_delay
        )
        self._sleep = sleep
        self._clock = clock

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = PrecalculationMetrics()
        self._recomputed_this_run = False

    async def run_all(self, force_all: bool = False) -> dict:
        """
        Run one full pass over all active tenants.

        Returns:
            dict: Run metrics, or a skip marker if a run is already active
        """
        if self.is_running:
            logger.warning("Precalculation already running, skipping this request")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        self.job_metrics.reset()
        self._recomputed_this_run = False
        bind_run_context(run_id=uuid.uuid4().hex[:12])

        try:
            logger.info("Starting cache precalculation", force_all=force_all, ranges=self.ranges)

            try:
                tenants = await self.directory.list_active_tenants()
            except Exception as e:
                logger.error("Could not list active tenants", error=str(e), error_type=type(e).__name__)
                self.job_metrics.finalize()
                metrics = self.job_metrics.to_dict()
                metrics["job_error"] = str(e)
                return metrics

            if not tenants:
                logger.info("No active tenants found")

            for tenant in tenants:
                try:
                    await self._process_tenant(tenant, force_all)
                except Exception as e:
                    self.job_metrics.tenants_skipped += 1
                    logger.error(
                        "Tenant precalculation failed",
                        tenant=tenant.slug,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

            self.job_metrics.finalize()
            self.last_run_time = self._clock()
            metrics = self.job_metrics.to_dict()
            logger.info("Cache precalculation complete", **metrics)
            return metrics

        finally:
            self.is_running = False
            clear_run_context("run_id")

    async def _process_tenant(self, tenant: Tenant, force_all: bool) -> None:
        log = logger.bind(tenant=tenant.slug)

        credentials = await self.directory.get_credentials(tenant.id)
        if not credentials or not credentials.has_department_key:
            self.job_metrics.tenants_skipped += 1
            log.info("Skipping tenant: no department API key configured")
            return

        subjects = await self.directory.list_departments(tenant.id)
        if not subjects:
            log.info("No departments found for tenant")

        if credentials.has_individuals_key:
            subjects = [*subjects, Subject.individuals()]
        else:
            log.info("Skipping individuals: no individuals API key configured")

        self.job_metrics.tenants_processed += 1
        log.info("Processing tenant", subjects=[subject.name for subject in subjects])

        for subject in subjects:
            for range_name in self.ranges:
                try:
                    await self._process_combination(tenant, credentials, subject, range_name, force_all)
                except Exception as e:
                    self.job_metrics.record_failure(tenant.slug, subject.name, range_name, str(e))
                    log.error(
                        "Precalculation failed",
                        subject=subject.name,
                        range=range_name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

    async def _process_combination(
        self,
        tenant: Tenant,
        credentials: TenantCredentials,
        subject: Subject,
        range_name: str,
        force_all: bool,
    ) -> None:
        log = logger.bind(tenant=tenant.slug, subject=subject.name, range=range_name)

        async with self.cache_store.key_lock(tenant.slug, subject.name, range_name):
            now = self._clock()
            range_spec = self.resolver.resolve(range_name, now)
            existing = await self._read_existing(tenant, subject.name, range_name)

            if force_all:
                decision = Staleness.FORCED
            else:
                decision = evaluate_staleness(
                    existing,
                    current_range=range_spec,
                    today=self.resolver.today(now),
                    resolver=self.resolver,
                )

            if not decision.needs_regeneration:
                self.job_metrics.combinations_skipped += 1
                log.info("Using cached data", generated_at=existing.generated_at)
                return

            if decision is Staleness.HAS_ERRORS:
                log.info("Retrying failed records", cached_errors=existing.error_count)
            else:
                log.info("Fetching fresh data", reason=decision.value)

            if self._recomputed_this_run:
                await self._sleep(self.inter_range_delay)
            self._recomputed_this_run = True

            prior = existing if decision.reuses_prior else None
            entry = await self.regenerator.compute(
                tenant, subject, range_spec, prior, credentials=credentials
            )
            if entry is None:
                self.job_metrics.combinations_empty += 1
                return

            await self.cache_store.put(tenant.slug, subject.name, range_name, entry)
            self.job_metrics.record_entry(entry, repaired=prior is not None)
            log.info(
                "Precalculation done",
                successful=entry.total_records - entry.error_count,
                total=entry.total_records,
            )

    async def _read_existing(self, tenant: Tenant, subject_name: str, range_name: str) -> CacheEntry | None:
        try:
            return await self.cache_store.get(tenant.slug, subject_name, range_name)
        except CacheStoreError as e:
            # An unreadable entry is treated as missing and rebuilt
            logger.warning(
                "Ignoring unreadable cache entry",
                key=cache_key(tenant.slug, subject_name, range_name),
                error=str(e),
            )
            return None

    async def regenerate_specific(
        self, tenant_id: int, items: Sequence[RegenerationItem]
    ) -> list[RegenerationOutcome]:
        """
        Delete and fully recompute the requested entries, ignoring staleness.

        Returns:
            list[RegenerationOutcome]: one outcome per requested item, in order
        """
        try:
            tenant = await self.directory.get_tenant(tenant_id)
            credentials = await self.directory.get_credentials(tenant_id) if tenant else None
        except Exception as e:
            logger.error("Directory lookup failed for selective regeneration", tenant_id=tenant_id, error=str(e))
            return _fail_all(items, f"Directory unavailable: {e}")

        if tenant is None:
            return _fail_all(items, f"Tenant {tenant_id} not found")
        if not credentials or not credentials.has_department_key:
            return _fail_all(items, "No department API key configured for tenant")

        logger.info("Selective regeneration started", tenant=tenant.slug, item_count=len(items))

        outcomes: list[RegenerationOutcome] = []
        for position, item in enumerate(items):
            outcome = await self._regenerate_item(tenant, credentials, item)
            outcomes.append(outcome)
            logger.info(
                "Selective regeneration item finished",
                tenant=tenant.slug,
                subject=item.subject,
                range=item.range_name,
                status=outcome.status,
                errors=outcome.errors,
                total=outcome.total_records,
            )

            if position < len(items) - 1:
                await self._sleep(self.inter_item_delay)

        fully_successful = sum(1 for outcome in outcomes if outcome.status == "success")
        logger.info(
            "Selective regeneration complete",
            tenant=tenant.slug,
            fully_successful=fully_successful,
            item_count=len(outcomes),
        )
        return outcomes

    async def _regenerate_item(
        self, tenant: Tenant, credentials: TenantCredentials, item: RegenerationItem
    ) -> RegenerationOutcome:
        subject = (
            Subject.individuals() if item.subject == INDIVIDUALS_SUBJECT else Subject(name=item.subject)
        )
        try:
            async with self.cache_store.key_lock(tenant.slug, item.subject, item.range_name):
                await self.cache_store.delete(tenant.slug, item.subject, item.range_name)

                range_spec = self.resolver.resolve(item.range_name, self._clock())
                entry = await self.regenerator.compute(
                    tenant, subject, range_spec, None, credentials=credentials
                )
                if entry is None:
                    return RegenerationOutcome(
                        item.subject, item.range_name, "error", error="No data returned (no users found)"
                    )

                await self.cache_store.put(tenant.slug, item.subject, item.range_name, entry)

        except Exception as e:
            logger.error(
                "Selective regeneration item failed",
                tenant=tenant.slug,
                subject=item.subject,
                range=item.range_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return RegenerationOutcome(item.subject, item.range_name, "error", error=str(e))

        errors = entry.error_count
        if errors == 0:
            status = "success"
        elif errors < entry.total_records:
            status = "partial"
        else:
            status = "error"
        return RegenerationOutcome(
            item.subject, item.range_name, status, total_records=entry.total_records, errors=errors
        )

    def get_job_status(self) -> dict:
        return {
            "job_name": "precalculation",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "ranges": self.ranges,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }


def _fail_all(items: Sequence[RegenerationItem], error: str) -> list[RegenerationOutcome]:
    logger.warning("Selective regeneration rejected", error=error, item_count=len(items))
    return [RegenerationOutcome(item.subject, item.range_name, "error", error=error) for item in items]
