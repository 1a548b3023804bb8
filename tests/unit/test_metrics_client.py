"""
Tests for the analytics provider client: polling, rate limits and hard failures.
"""

import json

import httpx
import pytest

from inbox_metrics.features.precalculation.domain import RangeSpec
from inbox_metrics.features.precalculation.services.metrics_client import MetricsClient, RetryPolicy

ENDPOINT = "https://analytics.test/reports"
RANGE = RangeSpec(name="lastWeek", start=1709442000, end=1710046799, label="Last Week")

DONE_BODY = {
    "status": "done",
    "metrics": [
        {"id": "num_messages_received", "value": 12},
        {"id": "num_messages_sent", "value": 7},
        {"id": "avg_response_time", "value": 3600.5},
    ],
}


def _client(recording_sleep, **policy) -> MetricsClient:
    return MetricsClient(
        RetryPolicy(**policy),
        timezone_name="America/New_York",
        metric_names=["num_messages_received", "num_messages_sent", "avg_response_time"],
        timeout=5.0,
        sleep=recording_sleep,
    )


@pytest.mark.asyncio
async def test_fetch_done_on_first_attempt(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)
    record = record_factory("tea_1", code="inb_cs")

    result = await client.fetch(record, RANGE, "secret-key", ENDPOINT, record_index=3)
    await client.close()

    assert result.is_success
    assert result.record_index == 3
    assert result.metrics.received == 12
    assert result.metrics.sent == 7
    assert result.metrics.avg_reply_seconds == 3600.5
    assert recording_sleep.calls == []

    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "secret-key"
    body = json.loads(request.content)
    assert body == {
        "filters": {"teammate_ids": ["tea_1"], "channel_ids": ["inb_cs"]},
        "start": RANGE.start,
        "end": RANGE.end,
        "timezone": "America/New_York",
        "metrics": ["num_messages_received", "num_messages_sent", "avg_response_time"],
    }


@pytest.mark.asyncio
async def test_individual_request_has_no_channel_filter(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)

    await client.fetch(record_factory("tea_9"), RANGE, "indiv-key", ENDPOINT)
    await client.close()

    body = json.loads(httpx_mock.get_request().content)
    assert body["filters"] == {"teammate_ids": ["tea_9"]}


@pytest.mark.asyncio
async def test_plain_numeric_metrics_are_accepted(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "done", "metrics": [5, 2.0, None]})
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.metrics.to_dict() == {"received": 5, "sent": 2, "avg_reply_seconds": None}


@pytest.mark.asyncio
async def test_pending_reports_are_polled_with_growing_backoff(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "pending"})
    httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "running"})
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.is_success
    assert recording_sleep.calls == [3.0, 3.5]
    assert len(httpx_mock.get_requests()) == 3


def test_pending_backoff_is_capped():
    policy = RetryPolicy()

    assert policy.pending_backoff(1) == 3.0
    assert policy.pending_backoff(10) == 7.5
    assert policy.pending_backoff(11) == 8.0
    assert policy.pending_backoff(24) == 8.0


@pytest.mark.asyncio
async def test_retry_budget_exhausted_returns_error(httpx_mock, recording_sleep, record_factory):
    for _ in range(3):
        httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "pending"})
    client = _client(recording_sleep, max_retries=3)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert not result.is_success
    assert result.error == "Max retries reached, status not 'done'"
    # No backoff after the final attempt
    assert recording_sleep.calls == [3.0, 3.5]


@pytest.mark.asyncio
async def test_rate_limit_waits_for_hinted_milliseconds(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(
        url=ENDPOINT,
        method="POST",
        status_code=429,
        json={"_error": {"status": 429, "title": "Too many requests", "message": "Rate limit exceeded. Retry in 1200 ms"}},
    )
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.is_success
    assert recording_sleep.calls == [pytest.approx(2.2)]


@pytest.mark.asyncio
async def test_rate_limit_falls_back_to_retry_after_header(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429, headers={"Retry-After": "3"})
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)

    await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert recording_sleep.calls == [pytest.approx(4.0)]


@pytest.mark.asyncio
async def test_rate_limit_without_hint_uses_default_wait(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429, json={"_error": {"message": "slow down"}})
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep)

    await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert recording_sleep.calls == [pytest.approx(6.0)]


@pytest.mark.asyncio
async def test_rate_limits_count_against_budget_by_default(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429)
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429)
    client = _client(recording_sleep, max_retries=2)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert not result.is_success
    assert result.error == "Max retries reached, rate limited by analytics API"
    # The hinted wait is skipped once the last attempt is spent
    assert recording_sleep.calls == [pytest.approx(6.0)]
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_rate_limits_can_be_excluded_from_budget(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429)
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=429)
    httpx_mock.add_response(url=ENDPOINT, method="POST", json=DONE_BODY)
    client = _client(recording_sleep, max_retries=2, rate_limit_counts_against_budget=False)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.is_success
    assert len(recording_sleep.calls) == 2


@pytest.mark.asyncio
async def test_http_error_is_terminal(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", status_code=500, json={"error": "boom"})
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert not result.is_success
    assert result.error == "Analytics API error: 500"
    assert recording_sleep.calls == []
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_failed_report_status_is_terminal(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "failed"})
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.error == "Analytics report failed"


@pytest.mark.asyncio
async def test_transport_error_is_terminal(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert not result.is_success
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_done_without_metric_triple_is_an_error(httpx_mock, recording_sleep, record_factory):
    httpx_mock.add_response(url=ENDPOINT, method="POST", json={"status": "done", "metrics": [{"value": 1}]})
    client = _client(recording_sleep)

    result = await client.fetch(record_factory("tea_1"), RANGE, "key", ENDPOINT)
    await client.close()

    assert result.error == "Analytics report missing metrics"
