"""
Analytics provider client.

Issues one report request per teammate against the tenant's analytics
endpoint. The provider computes reports asynchronously, so the same
request is resubmitted until the report status is terminal. Every call
ends in exactly one ResultRecord (payload or error); provider failures
never propagate to the caller.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.domain import (
    MetricsPayload,
    ProviderHardError,
    ProviderPending,
    ProviderRateLimited,
    RangeSpec,
    ResultRecord,
    SubjectRecord,
)
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DONE_STATUS = "done"
FAILED_STATUSES = {"failed", "error"}

_FIRST_INTEGER = re.compile(r"\d+")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class RetryPolicy:
    """Retry budget and delays for one provider call."""

    max_retries: int = 25
    pending_backoff_base: float = 2.5
    pending_backoff_step: float = 0.5
    pending_backoff_cap: float = 8.0
    rate_limit_default_wait_ms: int = 5000
    rate_limit_margin: float = 1.0
    rate_limit_counts_against_budget: bool = True

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(**settings.get_retry_config())

    def pending_backoff(self, attempt: int) -> float:
        """Delay after the ``attempt``-th pending response (1-based)."""
        return min(self.pending_backoff_base + attempt * self.pending_backoff_step, self.pending_backoff_cap)


class MetricsClient:
    """
    Client for the analytics reports endpoint.

    The HTTP client is created lazily and shared across calls; the sleep
    function is injectable so tests can observe waits without delays.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        *,
        timezone_name: str | None = None,
        metric_names: list[str] | None = None,
        timeout: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.timezone_name = timezone_name or settings.BUSINESS_TIMEZONE
        self.metric_names = metric_names or settings.analytics_metric_names()
        self.timeout = timeout if timeout is not None else settings.ANALYTICS_REQUEST_TIMEOUT
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_request_body(self, record: SubjectRecord, range_spec: RangeSpec) -> dict[str, Any]:
        filters: dict[str, list[str]] = {"teammate_ids": [record.id]}
        if record.channel_code:
            filters["channel_ids"] = [record.channel_code]

        return {
            "filters": filters,
            "start": range_spec.start,
            "end": range_spec.end,
            "timezone": self.timezone_name,
            "metrics": list(self.metric_names),
        }

    async def fetch(
        self,
        record: SubjectRecord,
        range_spec: RangeSpec,
        credential: str,
        endpoint: str,
        record_index: int = 1,
    ) -> ResultRecord:
        """
        Fetch the metric triple for one teammate.

        Returns:
            ResultRecord: success payload, or the error that ended the call
        """
        policy = self.retry_policy
        body = self.build_request_body(record, range_spec)
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": credential,
        }

        attempts = 0
        last_failure = "status not 'done'"
        while attempts < policy.max_retries:
            try:
                payload = await self._attempt(endpoint, headers, body)
                return ResultRecord.success(record_index, record, payload)

            except ProviderRateLimited as e:
                last_failure = "rate limited by analytics API"
                if policy.rate_limit_counts_against_budget:
                    attempts += 1
                    if attempts >= policy.max_retries:
                        break
                wait = e.wait_seconds + policy.rate_limit_margin
                logger.info(
                    "Analytics API rate limited",
                    record_id=record.id,
                    record_index=record_index,
                    wait_seconds=wait,
                )
                await self._sleep(wait)

            except ProviderPending as e:
                last_failure = "status not 'done'"
                attempts += 1
                if attempts < policy.max_retries:
                    backoff = policy.pending_backoff(attempts)
                    logger.debug(
                        "Analytics report pending, retrying",
                        record_id=record.id,
                        status=e.status,
                        attempt=attempts,
                        backoff_seconds=backoff,
                    )
                    await self._sleep(backoff)

            except ProviderHardError as e:
                logger.error(
                    "Analytics API request failed",
                    record_id=record.id,
                    record_index=record_index,
                    status_code=e.status_code,
                    error=str(e),
                )
                return ResultRecord.failure(record_index, record, str(e))

        logger.warning(
            "Analytics report not done within retry budget",
            record_id=record.id,
            record_index=record_index,
            max_retries=policy.max_retries,
            last_failure=last_failure,
        )
        return ResultRecord.failure(record_index, record, f"Max retries reached, {last_failure}")

    async def _attempt(self, endpoint: str, headers: dict, body: dict) -> MetricsPayload:
        """
        Submit the report request once.

        Raises:
            ProviderRateLimited: 429 response
            ProviderPending: report not computed yet
            ProviderHardError: any other failure
        """
        try:
            response = await self._get_client().post(endpoint, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise ProviderHardError(f"Analytics API request error: {type(e).__name__}: {e}") from e

        if response.status_code == 429:
            raise ProviderRateLimited(self._rate_limit_wait_seconds(response))

        if not response.is_success:
            raise ProviderHardError(
                f"Analytics API error: {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderHardError(f"Invalid response format: {e}") from e

        status = data.get("status") if isinstance(data, dict) else None
        if status == DONE_STATUS:
            return self._parse_metrics(data)
        if status in FAILED_STATUSES:
            raise ProviderHardError(f"Analytics report {status}")
        raise ProviderPending(status)

    def _rate_limit_wait_seconds(self, response: httpx.Response) -> float:
        """Hinted wait from the error payload (ms), then Retry-After (s), then the default."""
        try:
            data = response.json()
        except ValueError:
            data = {}

        message = ""
        if isinstance(data, dict):
            error = data.get("_error") or {}
            if isinstance(error, dict):
                message = str(error.get("message") or "")

        match = _FIRST_INTEGER.search(message)
        if match:
            return int(match.group()) / 1000

        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.strip().isdigit():
            return float(retry_after.strip())

        return self.retry_policy.rate_limit_default_wait_ms / 1000

    def _parse_metrics(self, data: dict) -> MetricsPayload:
        metrics = data.get("metrics")
        if not isinstance(metrics, list) or len(metrics) < 3:
            raise ProviderHardError("Analytics report missing metrics")

        values = [_metric_value(item) for item in metrics[:3]]
        return MetricsPayload(received=values[0], sent=values[1], avg_reply_seconds=values[2])


def _metric_value(item: Any) -> float | None:
    if isinstance(item, dict):
        item = item.get("value")
    if item is None:
        return None
    try:
        value = float(item)
    except (TypeError, ValueError) as e:
        raise ProviderHardError(f"Invalid metric value: {item!r}") from e
    return int(value) if value.is_integer() else value
