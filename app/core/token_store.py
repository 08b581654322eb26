"""
Push token persistence: active-token lookup for delivery, registration, deactivation,
cleanup, health refresh and statistics.

Lookup and best-effort bookkeeping never raise: a store failure degrades to an empty
result (or a logged no-op) so the delivery pipeline keeps going.
"""
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.token_validator import HEALTHY_SCORE, TokenValidator, health_score, score_bucket
from app.core.utils import token_preview, utc_now
from app.models.push_token import PushToken

logger = logging.getLogger(__name__)

CONSECUTIVE_FAILURE_LIMIT = 5
UNHEALTHY_DEACTIVATION_SCORE = 25
SCORE_BUCKETS = ("0-25", "26-50", "51-75", "76-100")
AGE_BUCKETS = ("0-7 days", "8-30 days", "31-90 days", "91-365 days", "365+ days")


@dataclass
class ValidatedPushToken:
    id: str
    user_id: str
    user_type: str
    token: str
    platform: str
    is_active: bool
    last_used: datetime | None
    last_validated: datetime
    validation_score: int
    device_id: str | None = None
    device_name: str | None = None
    app_version: str | None = None


@dataclass
class ActiveTokensResult:
    tokens: list[ValidatedPushToken] = field(default_factory=list)
    invalid_tokens: list[str] = field(default_factory=list)
    missing_users: list[str] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @classmethod
    def empty(cls, total_requested: int = 0) -> "ActiveTokensResult":
        return cls(stats={
            "total_requested": total_requested,
            "valid_tokens_found": 0,
            "invalid_tokens_found": 0,
            "missing_users": 0,
        })


@dataclass
class CleanupResult:
    total_processed: int = 0
    tokens_deactivated: int = 0
    tokens_deleted: int = 0
    errors: list[str] = field(default_factory=list)
    cleanup_stats: dict[str, int] = field(default_factory=lambda: {
        "expired_tokens": 0,
        "invalid_format_tokens": 0,
    })

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HealthResult:
    total_tokens: int = 0
    healthy_tokens: int = 0
    unhealthy_tokens: int = 0
    tokens_refreshed: int = 0
    errors: list[str] = field(default_factory=list)
    by_platform: dict[str, int] = field(default_factory=dict)
    by_user_type: dict[str, int] = field(default_factory=dict)
    by_validation_score: dict[str, int] = field(default_factory=lambda: dict.fromkeys(SCORE_BUCKETS, 0))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _audit_entry(reason: str, now: datetime) -> dict[str, str]:
    return {"error": reason, "timestamp": now.isoformat()}


def _age_bucket(age_days: float) -> str:
    if age_days < 7:
        return "0-7 days"
    if age_days < 30:
        return "8-30 days"
    if age_days < 90:
        return "31-90 days"
    if age_days < 365:
        return "91-365 days"
    return "365+ days"


class PushTokenStore:
    """Gateway over the push_tokens table. Opens one session per operation."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], validator: TokenValidator):
        self.session_maker = session_maker
        self.validator = validator

    # ------------------------------------------------------------------
    # Delivery path
    # ------------------------------------------------------------------

    async def get_active_tokens_for_users(self, user_ids: Iterable[str]) -> ActiveTokensResult:
        """
        Active, valid tokens for the given users.
        Users with no active token at all are reported in missing_users; tokens failing
        validation are reported in invalid_tokens and deactivated.
        """
        requested = list(dict.fromkeys(uid for uid in user_ids if uid))
        result = ActiveTokensResult.empty(len(requested))
        if not requested:
            return result

        try:
            async with self.session_maker() as session:
                rows = (await session.execute(
                    select(PushToken).where(
                        PushToken.user_id.in_(requested),
                        PushToken.is_active.is_(True),
                    )
                )).scalars().all()
        except Exception as e:
            logger.exception("Failed to fetch active push tokens for %d users: %s", len(requested), e)
            return ActiveTokensResult.empty(len(requested))

        logger.info("Found %d active push tokens for %d users", len(rows), len(requested))

        by_user: dict[str, list[PushToken]] = defaultdict(list)
        for row in rows:
            by_user[row.user_id].append(row)

        now = utc_now()
        for user_id in requested:
            user_rows = by_user.get(user_id)
            if not user_rows:
                result.missing_users.append(user_id)
                continue
            for row in user_rows:
                validation = self.validator.validate(row.token)
                if validation.is_valid:
                    result.tokens.append(ValidatedPushToken(
                        id=row.id,
                        user_id=row.user_id,
                        user_type=row.user_type,
                        token=row.token,
                        platform=row.platform,
                        is_active=row.is_active,
                        last_used=row.last_used,
                        last_validated=now,
                        validation_score=health_score(row, validation, now),
                        device_id=row.device_id,
                        device_name=row.device_name,
                        app_version=row.app_version,
                    ))
                else:
                    result.invalid_tokens.append(row.token)
                    await self.mark_token_invalid(row.token, f"Validation failed: {', '.join(validation.errors)}")

        result.stats.update(
            valid_tokens_found=len(result.tokens),
            invalid_tokens_found=len(result.invalid_tokens),
            missing_users=len(result.missing_users),
        )
        logger.debug("Token lookup stats: %s", result.stats)
        return result

    async def mark_token_invalid(self, token: str, reason: str) -> bool:
        """Deactivate a token and append the reason to its audit trail. Best-effort."""
        try:
            async with self.session_maker() as session:
                row = (await session.execute(
                    select(PushToken).where(PushToken.token == token)
                )).scalar_one_or_none()
                if row is None:
                    return False
                now = utc_now()
                row.is_active = False
                row.deactivated_at = now
                row.deactivation_reason = reason
                row.validation_errors = [*(row.validation_errors or []), _audit_entry(reason, now)]
                await session.commit()
            logger.info("Marked push token %s invalid: %s", token_preview(token), reason)
            return True
        except Exception as e:
            logger.error("Error marking push token %s invalid: %s", token_preview(token), e)
            return False

    async def mark_tokens_used(self, tokens: list[str]) -> int:
        """Record successful delivery. Best-effort."""
        if not tokens:
            return 0
        now = utc_now()
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    update(PushToken)
                    .where(PushToken.token.in_(tokens))
                    .values(
                        last_used=now,
                        last_success=now,
                        success_count=PushToken.success_count + 1,
                        failure_count=0,
                        is_healthy=True,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                return result.rowcount or 0
        except Exception as e:
            logger.error("Error updating last_used for %d push tokens: %s", len(tokens), e)
            return 0

    async def record_delivery_failure(self, token: str, message: str) -> None:
        """Count a failed delivery; too many consecutive failures deactivate the token. Best-effort."""
        try:
            async with self.session_maker() as session:
                row = (await session.execute(
                    select(PushToken).where(PushToken.token == token)
                )).scalar_one_or_none()
                if row is None:
                    return
                now = utc_now()
                previous_failures = row.failure_count or 0
                row.failure_count = previous_failures + 1
                row.last_failure = now
                row.validation_errors = [*(row.validation_errors or []), _audit_entry(message, now)]
                if previous_failures >= CONSECUTIVE_FAILURE_LIMIT:
                    row.is_active = False
                    row.deactivated_at = now
                    row.deactivation_reason = f"Too many delivery failures: {row.failure_count}"
                    logger.warning("Deactivated push token %s after %d failures", token_preview(token), row.failure_count)
                await session.commit()
        except Exception as e:
            logger.error("Error recording delivery failure for %s: %s", token_preview(token), e)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_token(
        self,
        *,
        user_id: str,
        token: str,
        platform: str,
        user_type: str,
        device_id: str | None = None,
        device_name: str | None = None,
        app_version: str | None = None,
    ) -> tuple[PushToken, bool]:
        """Create or update a token. Returns (row, is_new)."""
        now = utc_now()
        async with self.session_maker() as session:
            existing = (await session.execute(
                select(PushToken).where(PushToken.token == token)
            )).scalar_one_or_none()

            if device_id:
                # one active token per physical device
                stale = update(PushToken).where(
                    PushToken.user_id == user_id,
                    PushToken.device_id == device_id,
                    PushToken.is_active.is_(True),
                )
                if existing is not None:
                    stale = stale.where(PushToken.id != existing.id)
                await session.execute(
                    stale.values(is_active=False, deactivated_at=now, deactivation_reason="Replaced by newer registration")
                    .execution_options(synchronize_session=False)
                )

            if existing is not None:
                existing.user_id = user_id
                existing.user_type = user_type
                existing.platform = platform
                existing.device_id = device_id
                existing.device_name = device_name
                existing.app_version = app_version
                existing.is_active = True
                existing.last_used = now
                existing.deactivated_at = None
                existing.deactivation_reason = None
                await session.commit()
                await session.refresh(existing)
                logger.info("Updated push token %s for user %s", existing.id, user_id)
                return existing, False

            row = PushToken(
                user_id=user_id,
                user_type=user_type,
                token=token,
                platform=platform,
                device_id=device_id,
                device_name=device_name,
                app_version=app_version,
                is_active=True,
                last_used=now,
                validation_errors=[],
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.info("Registered push token %s for user %s (%s)", row.id, user_id, platform)
            return row, True

    async def list_tokens(
        self,
        user_id: str,
        user_type: str | None = None,
        is_active: bool | None = None,
    ) -> list[PushToken]:
        query = select(PushToken).where(PushToken.user_id == user_id)
        if user_type:
            query = query.where(PushToken.user_type == user_type)
        if is_active is not None:
            query = query.where(PushToken.is_active.is_(is_active))
        async with self.session_maker() as session:
            rows = await session.execute(query.order_by(PushToken.last_used.desc()))
            return list(rows.scalars().all())

    async def deactivate_tokens(
        self,
        *,
        token_id: str | None = None,
        token: str | None = None,
        user_id: str | None = None,
        owner_id: str | None = None,
    ) -> int:
        """
        Deactivate by the first supplied selector: token_id, then token, then user_id.
        owner_id, when given, restricts the update to that user's tokens.
        """
        if token_id:
            condition = PushToken.id == token_id
        elif token:
            condition = PushToken.token == token
        elif user_id:
            condition = PushToken.user_id == user_id
        else:
            raise ValueError("token_id, token, or user_id is required")

        conditions = [condition, PushToken.is_active.is_(True)]
        if owner_id is not None:
            conditions.append(PushToken.user_id == owner_id)

        async with self.session_maker() as session:
            result = await session.execute(
                update(PushToken)
                .where(*conditions)
                .values(is_active=False, deactivated_at=utc_now(), deactivation_reason="Deactivated by request")
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        count = result.rowcount or 0
        logger.info("Deactivated %d push token(s)", count)
        return count

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_tokens(self, max_age_days: int = 30, delete_after_days: int = 90) -> CleanupResult:
        result = CleanupResult()
        now = utc_now()
        cutoff = now - timedelta(days=max_age_days)
        delete_cutoff = now - timedelta(days=delete_after_days)
        logger.info("Starting push token cleanup (max age: %d days)", max_age_days)

        try:
            async with self.session_maker() as session:
                rows = (await session.execute(
                    select(PushToken).where(PushToken.is_active.is_(True))
                )).scalars().all()

                for row in rows:
                    try:
                        if row.last_used is not None and row.last_used < cutoff:
                            result.total_processed += 1
                            row.is_active = False
                            row.deactivated_at = now
                            row.deactivation_reason = f"Unused for more than {max_age_days} days"
                            result.tokens_deactivated += 1
                            result.cleanup_stats["expired_tokens"] += 1
                            continue

                        validation = self.validator.validate(row.token)
                        if not validation.is_valid:
                            result.total_processed += 1
                            reason = f"Cleanup validation failed: {', '.join(validation.errors)}"
                            row.is_active = False
                            row.deactivated_at = now
                            row.deactivation_reason = reason
                            row.validation_errors = [*(row.validation_errors or []), _audit_entry(reason, now)]
                            result.tokens_deactivated += 1
                            result.cleanup_stats["invalid_format_tokens"] += 1
                    except Exception as e:
                        result.errors.append(f"Error processing token {row.id}: {e}")

                # rows deactivated above are never older than delete_cutoff, so the order is safe
                deleted = await session.execute(
                    delete(PushToken)
                    .where(PushToken.is_active.is_(False), PushToken.updated_at < delete_cutoff)
                    .execution_options(synchronize_session=False)
                )
                result.tokens_deleted = deleted.rowcount or 0
                await session.commit()
        except Exception as e:
            logger.exception("Push token cleanup failed: %s", e)
            result.errors.append(f"Cleanup failed: {e}")

        logger.info(
            "Cleanup complete: processed=%d deactivated=%d deleted=%d errors=%d",
            result.total_processed, result.tokens_deactivated, result.tokens_deleted, len(result.errors),
        )
        return result

    async def refresh_token_health(self) -> HealthResult:
        result = HealthResult()
        now = utc_now()
        to_invalidate: list[tuple[str, int]] = []

        try:
            async with self.session_maker() as session:
                rows = (await session.execute(
                    select(PushToken).where(PushToken.is_active.is_(True))
                )).scalars().all()
                result.total_tokens = len(rows)

                for row in rows:
                    try:
                        validation = self.validator.validate(row.token)
                        score = health_score(row, validation, now)
                        healthy = validation.is_valid and score >= HEALTHY_SCORE
                        row.validation_score = score
                        row.is_healthy = healthy
                        row.last_validated = now
                        result.tokens_refreshed += 1

                        if healthy:
                            result.healthy_tokens += 1
                        else:
                            result.unhealthy_tokens += 1
                            if score < UNHEALTHY_DEACTIVATION_SCORE:
                                to_invalidate.append((row.token, score))

                        result.by_platform[row.platform] = result.by_platform.get(row.platform, 0) + 1
                        result.by_user_type[row.user_type] = result.by_user_type.get(row.user_type, 0) + 1
                        result.by_validation_score[score_bucket(score)] += 1
                    except Exception as e:
                        result.errors.append(f"Error refreshing token {row.id}: {e}")
                await session.commit()
        except Exception as e:
            logger.exception("Push token health refresh failed: %s", e)
            result.errors.append(f"Health refresh failed: {e}")

        for token, score in to_invalidate:
            await self.mark_token_invalid(token, f"Low health score: {score}")

        logger.info(
            "Health refresh complete: total=%d healthy=%d unhealthy=%d",
            result.total_tokens, result.healthy_tokens, result.unhealthy_tokens,
        )
        return result

    async def get_token_statistics(self, cleanup_after_days: int = 30) -> dict[str, Any]:
        cutoff = utc_now() - timedelta(days=cleanup_after_days)
        async with self.session_maker() as session:
            total = (await session.execute(select(func.count(PushToken.id)))).scalar() or 0
            active = (await session.execute(
                select(func.count(PushToken.id)).where(PushToken.is_active.is_(True))
            )).scalar() or 0
            by_platform = dict((await session.execute(
                select(PushToken.platform, func.count(PushToken.id))
                .where(PushToken.is_active.is_(True))
                .group_by(PushToken.platform)
            )).all())
            by_user_type = dict((await session.execute(
                select(PushToken.user_type, func.count(PushToken.id))
                .where(PushToken.is_active.is_(True))
                .group_by(PushToken.user_type)
            )).all())
            scores = (await session.execute(
                select(PushToken.validation_score)
                .where(PushToken.is_active.is_(True), PushToken.validation_score.isnot(None))
            )).scalars().all()
            needing_cleanup = (await session.execute(
                select(func.count(PushToken.id)).where(or_(
                    PushToken.is_active.is_(False) & (PushToken.updated_at < cutoff),
                    PushToken.last_used < cutoff,
                ))
            )).scalar() or 0

        by_score = dict.fromkeys(SCORE_BUCKETS, 0)
        for score in scores:
            by_score[score_bucket(score)] += 1

        return {
            "overview": {
                "total_tokens": total,
                "active_tokens": active,
                "inactive_tokens": total - active,
                "average_validation_score": round(sum(scores) / len(scores)) if scores else 0,
            },
            "by_platform": by_platform,
            "by_user_type": by_user_type,
            "by_validation_score": by_score,
            "health_metrics": {
                "healthy_tokens": by_score["51-75"] + by_score["76-100"],
                "unhealthy_tokens": by_score["0-25"] + by_score["26-50"],
                "tokens_needing_cleanup": needing_cleanup,
            },
        }

    async def usage_analytics(self, now: datetime | None = None) -> dict[str, Any]:
        """Usage windows, age distribution and 30-day trends over all token rows."""
        now = now or utc_now()
        day_ago = now - timedelta(days=1)
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        async with self.session_maker() as session:
            rows = (await session.execute(
                select(PushToken.is_active, PushToken.created_at, PushToken.last_used)
            )).all()

        usage = {
            "daily_active_tokens": 0,
            "weekly_active_tokens": 0,
            "monthly_active_tokens": 0,
            "tokens_used_today": 0,
            "tokens_used_this_week": 0,
            "tokens_used_this_month": 0,
        }
        expired = 0
        by_age = dict.fromkeys(AGE_BUCKETS, 0)
        registrations: dict[str, int] = defaultdict(int)
        usage_by_day: dict[str, dict[str, int]] = defaultdict(lambda: {"active_count": 0, "usage_count": 0})

        for is_active, created_at, last_used in rows:
            if last_used is not None:
                for since, used_key, active_key in (
                    (day_ago, "tokens_used_today", "daily_active_tokens"),
                    (week_ago, "tokens_used_this_week", "weekly_active_tokens"),
                    (month_ago, "tokens_used_this_month", "monthly_active_tokens"),
                ):
                    if last_used >= since:
                        usage[used_key] += 1
                        if is_active:
                            usage[active_key] += 1
                if last_used < month_ago:
                    expired += 1
                else:
                    day = usage_by_day[last_used.strftime("%Y-%m-%d")]
                    day["usage_count"] += 1
                    if is_active:
                        day["active_count"] += 1
            if created_at is not None:
                by_age[_age_bucket((now - created_at).total_seconds() / 86400)] += 1
                if created_at >= month_ago:
                    registrations[created_at.strftime("%Y-%m-%d")] += 1

        return {
            "usage": usage,
            "expired_tokens": expired,
            "by_age": by_age,
            "registration_trend": [{"date": d, "count": c} for d, c in sorted(registrations.items())],
            "usage_trend": [{"date": d, **counts} for d, counts in sorted(usage_by_day.items())],
        }
