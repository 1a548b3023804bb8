"""
Read-only access to the tenant directory (tenants, inboxes, users).

The engine treats the directory as an external collaborator: anything
that implements the ``Directory`` protocol can stand in for the Postgres
repository (the tests use an in-memory fake).
"""

from typing import Protocol

from inbox_metrics.config import settings
from inbox_metrics.db.helpers import DatabaseError, fetch_all, fetch_one
from inbox_metrics.features.precalculation.domain import (
    Subject,
    SubjectRecord,
    Tenant,
    TenantCredentials,
)
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DirectoryUnavailable(DatabaseError):
    """The directory could not be read for this tenant or subject."""


class Directory(Protocol):
    async def list_active_tenants(self) -> list[Tenant]: ...

    async def get_tenant(self, tenant_id: int) -> Tenant | None: ...

    async def get_credentials(self, tenant_id: int) -> TenantCredentials | None: ...

    async def list_departments(self, tenant_id: int) -> list[Subject]: ...

    async def list_department_roster(self, tenant_id: int, department_name: str) -> list[SubjectRecord]: ...

    async def list_individuals_roster(self, tenant_id: int) -> list[SubjectRecord]: ...


class DirectoryRepository:
    """Postgres-backed directory. Every psycopg/pool failure becomes DirectoryUnavailable."""

    TENANT_SELECT_COLUMNS = "id, name, slug, is_active"

    @classmethod
    def _row_to_tenant(cls, row: dict | None) -> Tenant | None:
        if not row:
            return None

        return Tenant(
            id=int(row["id"]),
            name=row["name"],
            slug=row["slug"],
            is_active=bool(row.get("is_active", True)),
        )

    @classmethod
    def _row_to_record(cls, row: dict) -> SubjectRecord:
        return SubjectRecord(
            id=str(row["teammate_id"]),
            name=row["name"],
            email=row["email"],
            channel_code=row.get("code"),
        )

    @classmethod
    async def _fetch_all(cls, query: str, params: tuple, operation: str) -> list[dict]:
        try:
            return await fetch_all(query, params)
        except (DatabaseError, RuntimeError) as e:
            logger.error("Directory query failed", operation=operation, error=str(e))
            raise DirectoryUnavailable(f"Directory {operation} failed: {e}", operation=operation) from e

    @classmethod
    async def _fetch_one(cls, query: str, params: tuple, operation: str) -> dict | None:
        try:
            return await fetch_one(query, params)
        except (DatabaseError, RuntimeError) as e:
            logger.error("Directory query failed", operation=operation, error=str(e))
            raise DirectoryUnavailable(f"Directory {operation} failed: {e}", operation=operation) from e

    @classmethod
    async def list_active_tenants(cls) -> list[Tenant]:
        query = f"""
            SELECT {cls.TENANT_SELECT_COLUMNS}
            FROM tenants
            WHERE is_active = true
            ORDER BY id
        """
        rows = await cls._fetch_all(query, (), "list_active_tenants")
        return [cls._row_to_tenant(row) for row in rows]

    @classmethod
    async def get_tenant(cls, tenant_id: int) -> Tenant | None:
        query = f"SELECT {cls.TENANT_SELECT_COLUMNS} FROM tenants WHERE id = %s"
        row = await cls._fetch_one(query, (tenant_id,), "get_tenant")
        return cls._row_to_tenant(row)

    @classmethod
    async def get_credentials(cls, tenant_id: int) -> TenantCredentials | None:
        query = """
            SELECT front_api_key, front_api_key_individuals, front_endpoint
            FROM tenants
            WHERE id = %s
        """
        row = await cls._fetch_one(query, (tenant_id,), "get_credentials")
        if not row:
            return None

        return TenantCredentials(
            department_key=row.get("front_api_key"),
            individuals_key=row.get("front_api_key_individuals"),
            endpoint=row.get("front_endpoint") or settings.ANALYTICS_DEFAULT_ENDPOINT,
        )

    @classmethod
    async def list_departments(cls, tenant_id: int) -> list[Subject]:
        query = """
            SELECT name, code
            FROM inboxes
            WHERE tenant_id = %s
            ORDER BY name
        """
        rows = await cls._fetch_all(query, (tenant_id,), "list_departments")
        return [Subject(name=row["name"], code=row.get("code")) for row in rows]

    @classmethod
    async def list_department_roster(cls, tenant_id: int, department_name: str) -> list[SubjectRecord]:
        query = """
            SELECT u.teammate_id, u.email, u.name, i.code
            FROM users u
            INNER JOIN user_inbox ui ON u.id = ui.user_id
            INNER JOIN inboxes i ON ui.inbox_id = i.id
            WHERE i.name = %s AND i.tenant_id = %s AND u.tenant_id = %s
            ORDER BY u.name
        """
        rows = await cls._fetch_all(
            query, (department_name, tenant_id, tenant_id), "list_department_roster"
        )
        return [cls._row_to_record(row) for row in rows]

    @classmethod
    async def list_individuals_roster(cls, tenant_id: int) -> list[SubjectRecord]:
        query = """
            SELECT teammate_id, email, name
            FROM users
            WHERE is_individual = true AND tenant_id = %s
            ORDER BY name
        """
        rows = await cls._fetch_all(query, (tenant_id,), "list_individuals_roster")
        return [cls._row_to_record(row) for row in rows]
