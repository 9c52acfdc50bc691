import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.db.base import utcnow
from procure_ledger.models.idempotency import DocumentSequence

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


async def generate_document_number(db: AsyncSession, doc_type: str, at: datetime | None = None) -> str:
    """Next ``TYPE/YYYY/MM/NNNN`` number for doc_type in the month of ``at``.

    The counter row is locked for update and committed immediately, so call
    this before staging any other changes on the session.
    """
    at = at or utcnow()
    period = f"{at.year:04d}/{at.month:02d}"

    for attempt in range(1, MAX_ATTEMPTS + 1):
        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.doc_type == doc_type, DocumentSequence.period == period)
            .with_for_update()
        )
        row = (await db.execute(stmt)).scalars().first()
        if row is None:
            row = DocumentSequence(doc_type=doc_type, period=period, last_value=1)
            db.add(row)
        else:
            row.last_value += 1
        value = row.last_value
        try:
            await db.commit()
        except IntegrityError:
            # another writer created the period row first
            await db.rollback()
            logger.warning("Sequence %s %s insert raced (attempt %d)", doc_type, period, attempt)
            continue
        return f"{doc_type}/{period}/{value:04d}"

    raise RuntimeError(f"Could not allocate a {doc_type} number for {period}")
