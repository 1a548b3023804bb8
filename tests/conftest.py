from datetime import UTC, datetime

import pytest

from inbox_metrics.features.precalculation.domain import (
    CacheEntry,
    MetricsPayload,
    RangeSpec,
    ResultRecord,
    Subject,
    SubjectRecord,
    Tenant,
    TenantCredentials,
)
from inbox_metrics.features.precalculation.repository.cache_store import FileCacheStore
from inbox_metrics.features.precalculation.repository.directory_repository import DirectoryUnavailable
from inbox_metrics.features.precalculation.services.range_resolver import RangeResolver

# Wednesday 2024-03-13, 11:00 in New York
FIXED_NOW = datetime(2024, 3, 13, 15, 0, tzinfo=UTC)

ENDPOINT = "https://analytics.test/reports"


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeDirectory:
    def __init__(self):
        self.tenants: dict[int, Tenant] = {}
        self.credentials: dict[int, TenantCredentials] = {}
        self.departments: dict[int, list[Subject]] = {}
        self.rosters: dict[tuple[int, str], list[SubjectRecord]] = {}
        self.individuals: dict[int, list[SubjectRecord]] = {}
        self.unavailable_tenants: set[int] = set()
        self.unavailable_rosters: set[tuple[int, str]] = set()

    def add_tenant(self, tenant: Tenant, credentials: TenantCredentials | None = None) -> Tenant:
        self.tenants[tenant.id] = tenant
        if credentials is not None:
            self.credentials[tenant.id] = credentials
        return tenant

    def add_department(self, tenant_id: int, name: str, records: list[SubjectRecord], code: str | None = None):
        self.departments.setdefault(tenant_id, []).append(Subject(name=name, code=code))
        self.rosters[(tenant_id, name)] = records

    def _check(self, tenant_id: int):
        if tenant_id in self.unavailable_tenants:
            raise DirectoryUnavailable(f"tenant {tenant_id} unavailable", operation="test")

    async def list_active_tenants(self) -> list[Tenant]:
        return [tenant for tenant in self.tenants.values() if tenant.is_active]

    async def get_tenant(self, tenant_id: int) -> Tenant | None:
        self._check(tenant_id)
        return self.tenants.get(tenant_id)

    async def get_credentials(self, tenant_id: int) -> TenantCredentials | None:
        self._check(tenant_id)
        return self.credentials.get(tenant_id)

    async def list_departments(self, tenant_id: int) -> list[Subject]:
        self._check(tenant_id)
        return list(self.departments.get(tenant_id, []))

    async def list_department_roster(self, tenant_id: int, department_name: str) -> list[SubjectRecord]:
        self._check(tenant_id)
        if (tenant_id, department_name) in self.unavailable_rosters:
            raise DirectoryUnavailable(f"roster {department_name} unavailable", operation="test")
        return list(self.rosters.get((tenant_id, department_name), []))

    async def list_individuals_roster(self, tenant_id: int) -> list[SubjectRecord]:
        self._check(tenant_id)
        return list(self.individuals.get(tenant_id, []))


class FakeMetricsClient:
    """Returns a success payload per record unless its id is in ``fail_ids``."""

    def __init__(self, fail_ids: set[str] | None = None):
        self.fail_ids = fail_ids or set()
        self.calls: list[dict] = []

    async def fetch(self, record, range_spec, credential, endpoint, record_index=1) -> ResultRecord:
        self.calls.append(
            {
                "record_id": record.id,
                "range": range_spec.name,
                "credential": credential,
                "endpoint": endpoint,
                "record_index": record_index,
            }
        )
        if record.id in self.fail_ids:
            return ResultRecord.failure(record_index, record, "Analytics API error: 500")
        return ResultRecord.success(record_index, record, MetricsPayload(received=10, sent=4, avg_reply_seconds=900))

    async def close(self):
        return None

    @property
    def fetched_ids(self) -> list[str]:
        return [call["record_id"] for call in self.calls]


class FakeRedisClient:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.healthy = True

    async def initialize(self):
        return None

    async def close(self):
        return None

    async def ping(self) -> bool:
        return self.healthy

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


def make_record(record_id: str, name: str | None = None, code: str | None = None) -> SubjectRecord:
    name = name or f"Agent {record_id}"
    return SubjectRecord(id=record_id, name=name, email=f"{name.lower().replace(' ', '.')}@acme.test", channel_code=code)


def make_entry(
    records: list[SubjectRecord],
    range_spec: RangeSpec,
    *,
    failed_ids: set[str] = frozenset(),
    generated_at: datetime = FIXED_NOW,
    subject: str = "Customer Support",
) -> CacheEntry:
    results = []
    for index, record in enumerate(records, start=1):
        if record.id in failed_ids:
            results.append(ResultRecord.failure(index, record, "Analytics API error: 502"))
        else:
            results.append(
                ResultRecord.success(index, record, MetricsPayload(received=1, sent=2, avg_reply_seconds=3))
            )
    return CacheEntry(
        subject=subject,
        range_name=range_spec.name,
        range_label=range_spec.label,
        range_start=range_spec.start,
        range_end=range_spec.end,
        generated_at=generated_at.isoformat(),
        total_records=len(records),
        results=results,
    )


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def resolver():
    return RangeResolver("America/New_York")


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def file_store(tmp_path):
    return FileCacheStore(tmp_path / "cache")


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def fake_client():
    return FakeMetricsClient()


@pytest.fixture
def acme_credentials():
    return TenantCredentials(department_key="dept-key", individuals_key="indiv-key", endpoint=ENDPOINT)


@pytest.fixture
def fake_directory(acme_credentials):
    directory = FakeDirectory()
    directory.add_tenant(Tenant(id=1, name="Acme", slug="acme"), acme_credentials)
    directory.add_department(
        1,
        "Customer Support",
        [make_record("tea_1", "Ada Lovelace", code="inb_cs"), make_record("tea_2", "Grace Hopper", code="inb_cs")],
        code="inb_cs",
    )
    directory.individuals[1] = [make_record("tea_9", "Alan Turing")]
    return directory


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def empty_directory():
    return FakeDirectory()


@pytest.fixture
def client_factory():
    return FakeMetricsClient
