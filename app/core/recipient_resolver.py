"""
Recipient resolution: which admin and staff accounts of a client should receive a notification.

Per request: cache check -> primary (admins + staff members of the client) ->
fallback (project-assigned staff) when primary errors, times out or finds nobody active.
Errors are collected on the result, never raised.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import NotificationError, NotificationErrorType
from app.models.admin import Admin
from app.models.enums import ResolutionSource, UserType
from app.models.project import ProjectAssignedStaff
from app.models.staff import Staff, StaffClient

logger = logging.getLogger(__name__)


class Recipient(BaseModel):
    user_id: str
    user_type: UserType
    client_id: str
    full_name: str
    email: str = ""
    role: str | None = None
    is_active: bool = True


class RecipientResolution(BaseModel):
    success: bool
    source: ResolutionSource
    recipients: list[Recipient] = []
    errors: list[NotificationError] = []
    recipient_count: int = 0
    deduplication_count: int = 0
    resolution_time_ms: float = 0.0

    @property
    def user_ids(self) -> list[str]:
        return [r.user_id for r in self.recipients]


@dataclass
class _CacheEntry:
    recipients: list[Recipient]
    timestamp: float
    ttl: float


def cache_key(client_id: str, project_id: str | None = None) -> str:
    return f"{client_id}:{project_id}" if project_id else client_id


class RecipientCache:
    """In-process TTL cache. Expired entries are evicted lazily on lookup."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, key: str) -> list[Recipient] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp > entry.ttl:
            del self._entries[key]
            return None
        return list(entry.recipients)

    def set(self, key: str, recipients: list[Recipient], ttl: float) -> None:
        self._entries[key] = _CacheEntry(list(recipients), self._clock(), ttl)

    def clear(self, client_id: str | None = None) -> int:
        if client_id is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        prefix = f"{client_id}:"
        keys = [k for k in self._entries if k == client_id or k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def size(self) -> int:
        return len(self._entries)


def _display_name(first: str | None, last: str | None, email: str | None, default: str) -> str:
    name = f"{first or ''} {last or ''}".strip()
    if name:
        return name
    if email:
        local = email.split("@")[0]
        if local:
            return local
    return default


@dataclass
class _PrimaryResult:
    recipients: list[Recipient] = field(default_factory=list)
    deduplication_count: int = 0


class RecipientResolver:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: RecipientCache,
        *,
        cache_ttl: float = 300.0,
        fallback_cache_ttl: float = 120.0,
        primary_timeout: float = 5.0,
        fallback_timeout: float = 3.0,
    ):
        self.session_maker = session_maker
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.fallback_cache_ttl = fallback_cache_ttl
        self.primary_timeout = primary_timeout
        self.fallback_timeout = fallback_timeout

    async def resolve(
        self,
        client_id: str,
        project_id: str | None = None,
        skip_cache: bool = False,
    ) -> RecipientResolution:
        started = time.perf_counter()
        key = cache_key(client_id, project_id)
        errors: list[NotificationError] = []

        def finish(source: ResolutionSource, recipients: list[Recipient], dedup: int = 0) -> RecipientResolution:
            elapsed = round((time.perf_counter() - started) * 1000, 2)
            logger.info(
                "Resolved %d recipients for client %s (project=%s, source=%s, errors=%d) in %.1fms",
                len(recipients), client_id, project_id, source.value, len(errors), elapsed,
            )
            return RecipientResolution(
                success=not errors or bool(recipients),
                source=source,
                recipients=recipients,
                errors=errors,
                recipient_count=len(recipients),
                deduplication_count=dedup,
                resolution_time_ms=elapsed,
            )

        if not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Recipient cache hit for %s", key)
                return finish(ResolutionSource.cache, cached)

        try:
            primary = await asyncio.wait_for(self._resolve_primary(client_id), timeout=self.primary_timeout)
            if primary.recipients:
                self.cache.set(key, primary.recipients, self.cache_ttl)
                return finish(ResolutionSource.primary, primary.recipients, primary.deduplication_count)
            logger.info("Primary resolution found no active recipients for client %s", client_id)
        except asyncio.TimeoutError:
            logger.warning("Primary recipient resolution timed out for client %s", client_id)
            errors.append(NotificationError.of(
                NotificationErrorType.timeout,
                f"Primary resolution timed out after {self.primary_timeout}s",
                stage="primary",
            ))
        except Exception as e:
            logger.exception("Primary recipient resolution failed for client %s: %s", client_id, e)
            errors.append(NotificationError.of(
                NotificationErrorType.recipient_resolution,
                f"Primary resolution failed: {e}",
                stage="primary",
            ))

        if not project_id:
            return finish(ResolutionSource.none, [])

        try:
            fallback = await asyncio.wait_for(
                self._resolve_fallback(client_id, project_id), timeout=self.fallback_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Fallback recipient resolution timed out for project %s", project_id)
            errors.append(NotificationError.of(
                NotificationErrorType.timeout,
                f"Fallback resolution timed out after {self.fallback_timeout}s",
                stage="fallback",
            ))
            return finish(ResolutionSource.none, [])
        except Exception as e:
            logger.exception("Fallback recipient resolution failed for project %s: %s", project_id, e)
            errors.append(NotificationError.of(
                NotificationErrorType.recipient_resolution,
                f"Fallback resolution failed: {e}",
                stage="fallback",
            ))
            return finish(ResolutionSource.none, [])

        if fallback:
            self.cache.set(key, fallback, self.fallback_cache_ttl)
        return finish(ResolutionSource.fallback, fallback)

    def both_stages_failed(self, resolution: RecipientResolution) -> bool:
        stages = {e.stage for e in resolution.errors}
        return {"primary", "fallback"} <= stages

    async def _resolve_primary(self, client_id: str) -> _PrimaryResult:
        async with self.session_maker() as session:
            admins, staff = await self._fetch_members(session, client_id)

        merged: dict[str, Recipient] = {}
        # admins first: an id present in both collections keeps its admin entry
        for admin in admins:
            merged.setdefault(admin.id, Recipient(
                user_id=admin.id,
                user_type=UserType.admin,
                client_id=client_id,
                full_name=_display_name(admin.first_name, admin.last_name, admin.email, "Admin"),
                email=admin.email or "",
                is_active=admin.is_active is not False,
            ))
        for member in staff:
            merged.setdefault(member.id, Recipient(
                user_id=member.id,
                user_type=UserType.staff,
                client_id=client_id,
                full_name=_display_name(member.first_name, member.last_name, member.email, "Staff"),
                email=member.email or "",
                role=member.role,
                is_active=member.is_active is not False,
            ))

        # id collisions across both collections, counted before inactive members are dropped
        dedup = len(admins) + len(staff) - len(merged)
        if dedup:
            logger.info("Collapsed %d duplicate recipient entries for client %s", dedup, client_id)
        return _PrimaryResult(
            recipients=[r for r in merged.values() if r.is_active],
            deduplication_count=dedup,
        )

    async def _fetch_members(self, session: AsyncSession, client_id: str) -> tuple[list[Any], list[Any]]:
        admins = (await session.execute(
            select(Admin).where(Admin.client_id == client_id).order_by(Admin.created_at)
        )).scalars().all()
        staff = (await session.execute(
            select(Staff)
            .join(StaffClient, StaffClient.staff_id == Staff.id)
            .where(StaffClient.client_id == client_id)
            .order_by(Staff.created_at)
        )).scalars().all()
        return list(admins), list(staff)

    async def _resolve_fallback(self, client_id: str, project_id: str) -> list[Recipient]:
        async with self.session_maker() as session:
            rows = (await session.execute(
                select(ProjectAssignedStaff).where(ProjectAssignedStaff.project_id == project_id)
            )).scalars().all()

        recipients: dict[str, Recipient] = {}
        for row in rows:
            recipients.setdefault(row.staff_id, Recipient(
                user_id=row.staff_id,
                user_type=UserType.staff,
                client_id=client_id,
                full_name=row.full_name or "Staff",
                email="",
                is_active=True,
            ))
        logger.info("Fallback found %d assigned staff for project %s", len(recipients), project_id)
        return list(recipients.values())

    async def project_staff_ids(self, project_id: str) -> list[str]:
        """Assigned staff ids of a project, without resolution bookkeeping."""
        async with self.session_maker() as session:
            rows = (await session.execute(
                select(ProjectAssignedStaff.staff_id).where(ProjectAssignedStaff.project_id == project_id)
            )).scalars().all()
        return list(dict.fromkeys(rows))
