"""
Precalculation scheduler.

Runs the precalculation job once at startup (when enabled), then checks at
every interval boundary whether the business-timezone clock is inside the
daily trigger window. Manual triggers return an acknowledgement right away
and run the work as tracked background tasks.
"""

import asyncio
from collections.abc import Callable, Coroutine, Sequence
from datetime import date, datetime
from typing import Any

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.jobs.precalculation_job import (
    PrecalculationJob,
    RegenerationItem,
)
from inbox_metrics.features.precalculation.services.metrics_client import Sleep
from inbox_metrics.features.precalculation.services.range_resolver import RangeResolver
from inbox_metrics.features.precalculation.services.regenerator import utc_now
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PrecalculationScheduler:
    def __init__(
        self,
        job: PrecalculationJob,
        resolver: RangeResolver | None = None,
        *,
        schedule_config: dict | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        config = schedule_config or settings.get_schedule_config()
        self.job = job
        self.resolver = resolver or job.resolver
        self.enabled = config["enabled"]
        self.run_on_start = config["run_on_start"]
        self.trigger_hour = config["trigger_hour"]
        self.trigger_window_minutes = config["trigger_window_minutes"]
        self.check_interval_seconds = config["check_interval_seconds"]
        self._sleep = sleep
        self._clock = clock

        self._loop_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._selective_results: dict[int, dict[str, Any]] = {}
        self.last_fired_date: date | None = None

    def is_trigger_time(self, now: datetime | None = None) -> bool:
        local = self.resolver.local_now(now or self._clock())
        return local.hour == self.trigger_hour and local.minute < self.trigger_window_minutes

    def seconds_until_next_check(self, now: datetime | None = None) -> float:
        """
        Seconds until the next interval boundary of the business-timezone
        clock (the local top of the hour for 3600).

        Boundaries are counted from local midnight so zones with a
        half-hour or 45-minute UTC offset still land on minute :00.
        """
        local = self.resolver.local_now(now or self._clock())
        since_midnight = (
            local.hour * 3600 + local.minute * 60 + local.second + local.microsecond / 1_000_000
        )
        remainder = since_midnight % self.check_interval_seconds
        return self.check_interval_seconds - remainder

    def start(self) -> asyncio.Task:
        """Start the scheduling loop as a background task."""
        if self._loop_task and not self._loop_task.done():
            logger.warning("Precalculation scheduler already started")
            return self._loop_task

        self._loop_task = asyncio.create_task(self._run_loop(), name="precalculation-scheduler")
        logger.info(
            "Precalculation scheduler STARTED",
            run_on_start=self.run_on_start,
            trigger_hour=self.trigger_hour,
            timezone=self.resolver.timezone_name,
        )
        return self._loop_task

    async def stop(self) -> None:
        tasks = [task for task in (self._loop_task, *self._background_tasks) if task and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        logger.info("Precalculation scheduler stopped", cancelled_tasks=len(tasks))

    async def _run_loop(self) -> None:
        if self.run_on_start:
            await self._run_scheduled("startup")

        while True:
            try:
                await self._sleep(self.seconds_until_next_check())

                now = self._clock()
                today = self.resolver.today(now)
                if self.is_trigger_time(now) and self.last_fired_date != today:
                    self.last_fired_date = today
                    await self._run_scheduled("daily")

            except asyncio.CancelledError:
                logger.info("Precalculation scheduler cancelled")
                break
            except Exception as e:
                logger.error("Error in precalculation scheduler, will retry", error=str(e))
                await self._sleep(self.check_interval_seconds)

    async def _run_scheduled(self, reason: str) -> None:
        logger.info("Running scheduled precalculation", reason=reason)
        try:
            result = await self.job.run_all(force_all=False)
            logger.info("Scheduled precalculation completed", reason=reason, result=result)
        except Exception as e:
            logger.error("Scheduled precalculation failed", reason=reason, error=str(e))

    def trigger_full(self, force: bool = False) -> dict:
        """Start a full run in the background and acknowledge immediately."""
        already_running = self.job.is_running
        self._spawn(self.job.run_all(force_all=force), name="precalculation-full")
        logger.info("Full precalculation triggered", force=force, already_running=already_running)
        return {
            "accepted": True,
            "force": force,
            "already_running": already_running,
        }

    def trigger_selective(self, tenant_id: int, items: Sequence[RegenerationItem]) -> dict:
        """Start a selective regeneration in the background and acknowledge immediately."""
        items = list(items)
        self._selective_results[tenant_id] = {
            "tenant_id": tenant_id,
            "status": "running",
            "requested_at": self._clock().isoformat(),
            "finished_at": None,
            "items": [{"subject": item.subject, "range": item.range_name} for item in items],
            "results": [],
        }
        self._spawn(self._run_selective(tenant_id, items), name=f"precalculation-selective-{tenant_id}")
        logger.info("Selective regeneration triggered", tenant_id=tenant_id, item_count=len(items))
        return {
            "accepted": True,
            "tenant_id": tenant_id,
            "item_count": len(items),
        }

    async def _run_selective(self, tenant_id: int, items: list[RegenerationItem]) -> None:
        record = self._selective_results[tenant_id]
        try:
            outcomes = await self.job.regenerate_specific(tenant_id, items)
        except Exception as e:
            record.update(status="failed", error=str(e), finished_at=self._clock().isoformat())
            raise

        record.update(
            status="completed",
            results=[outcome.to_dict() for outcome in outcomes],
            finished_at=self._clock().isoformat(),
        )

    def get_selective_results(self, tenant_id: int) -> dict | None:
        return self._selective_results.get(tenant_id)

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background precalculation task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    def get_status(self) -> dict:
        loop_running = bool(self._loop_task and not self._loop_task.done())
        return {
            "scheduler_enabled": self.enabled,
            "scheduler_running": loop_running,
            "trigger_hour": self.trigger_hour,
            "trigger_window_minutes": self.trigger_window_minutes,
            "timezone": self.resolver.timezone_name,
            "last_fired_date": self.last_fired_date.isoformat() if self.last_fired_date else None,
            "background_tasks": len(self._background_tasks),
            "job": self.job.get_job_status(),
        }
