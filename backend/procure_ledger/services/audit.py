"""Audit sink: append-only writes to the audit_logs table.

Audit writes happen after the primary commit and in their own session, so a
failing audit write can never roll back a financial operation. Callers use
record_audit_safely, which logs the failure for operators and carries on.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from procure_ledger.core.auth import AuthContext
from procure_ledger.models.audit import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    action: str  # e.g. GR_CREATED, BILL_CREATED, MATCH_APPROVED
    entity_type: str  # GOODS_RECEIPT, TRANSACTION, THREE_WAY_MATCH
    entity_id: uuid.UUID | str | None
    actor_id: uuid.UUID | str | None = None
    actor_name: str | None = None
    description: str | None = None
    entity_name: str | None = None
    before: Any | None = None
    after: Any | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def by(cls, auth: AuthContext, action: str, entity_type: str, entity_id, **kwargs) -> "AuditEvent":
        return cls(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=auth.user_id,
            actor_name=auth.display_name,
            **kwargs,
        )


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


def _dumps(value: Any | None) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


class SqlAuditSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        entry = AuditLog(
            actor_id=str(event.actor_id) if event.actor_id else None,
            actor_name=event.actor_name,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=str(event.entity_id) if event.entity_id else None,
            entity_name=event.entity_name,
            description=event.description,
            before_state=_dumps(event.before),
            after_state=_dumps(event.after),
            metadata_json=_dumps(event.metadata or None),
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
        logger.debug("Audit: %s %s/%s", event.action, event.entity_type, event.entity_id)


async def record_audit_safely(sink: AuditSink, event: AuditEvent) -> None:
    """Record an audit event; failures are logged, never raised."""
    try:
        await sink.record(event)
    except Exception:
        logger.error(
            "Audit write failed for %s %s/%s",
            event.action,
            event.entity_type,
            event.entity_id,
            exc_info=True,
        )
