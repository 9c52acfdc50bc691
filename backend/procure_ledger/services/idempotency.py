"""Idempotency keys for client-retried operations.

A key is claimed (IN_PROGRESS) before the operation runs and marked COMPLETED
with the resulting entity id afterwards. A retry with a completed key gets the
cached id back without re-running side effects; a retry while the first call
is still running is a conflict. Failed operations release their key.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.core.config import settings
from procure_ledger.core.errors import ConflictError
from procure_ledger.db.base import utcnow
from procure_ledger.models.idempotency import IdempotencyRecord, IdempotencyStatus

logger = logging.getLogger(__name__)


def generate_idempotency_key(operation: str, entity_id, suffix: str | None = None) -> str:
    """Key of the form ``operation:entity_id[:suffix]``."""
    key = f"{operation}:{entity_id}"
    if suffix:
        key = f"{key}:{suffix}"
    return key


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def with_idempotency(
    db: AsyncSession,
    key: str,
    operation: str,
    fn: Callable[[], Awaitable[uuid.UUID]],
    user_id: uuid.UUID | str | None = None,
    metadata: dict | None = None,
    ttl_hours: int | None = None,
) -> uuid.UUID:
    """Run ``fn`` at most once per key and return the id it produced."""
    now = utcnow()
    ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.IDEMPOTENCY_TTL_HOURS)

    existing = (
        await db.execute(select(IdempotencyRecord).where(IdempotencyRecord.key == key))
    ).scalars().first()
    if existing is not None:
        if _as_aware(existing.expires_at) > now:
            if existing.status == IdempotencyStatus.COMPLETED.value and existing.result_id:
                logger.info("Idempotent replay of %s (key=%s) -> %s", operation, key, existing.result_id)
                return uuid.UUID(existing.result_id)
            raise ConflictError(
                f"Operation {operation} is already in progress for this request.",
                code="IDEMPOTENCY_IN_PROGRESS",
                details={"key": key},
            )
        logger.info("Idempotency key %s expired; running %s again", key, operation)
        await db.delete(existing)
        await db.flush()

    db.add(
        IdempotencyRecord(
            key=key,
            operation=operation,
            status=IdempotencyStatus.IN_PROGRESS.value,
            user_id=str(user_id) if user_id else None,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
            expires_at=now + ttl,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            f"Operation {operation} is already in progress for this request.",
            code="IDEMPOTENCY_IN_PROGRESS",
            details={"key": key},
        )

    try:
        result = await fn()
    except Exception:
        await db.rollback()
        await db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.key == key))
        await db.commit()
        logger.info("Released idempotency key %s after %s failed", key, operation)
        raise

    await db.execute(
        update(IdempotencyRecord)
        .where(IdempotencyRecord.key == key)
        .values(
            status=IdempotencyStatus.COMPLETED.value,
            result_id=str(result),
            completed_at=utcnow(),
        )
    )
    await db.commit()
    return result
