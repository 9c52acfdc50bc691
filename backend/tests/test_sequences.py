"""Monthly document numbering."""
from datetime import datetime, timezone

import pytest

from procure_ledger.services.sequences import generate_document_number

MARCH = datetime(2026, 3, 14, tzinfo=timezone.utc)
APRIL = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_numbers_increase_within_a_month(db):
    assert await generate_document_number(db, "BILL", MARCH) == "BILL/2026/03/0001"
    assert await generate_document_number(db, "BILL", MARCH) == "BILL/2026/03/0002"


@pytest.mark.asyncio
async def test_counters_are_per_type_and_month(db):
    await generate_document_number(db, "BILL", MARCH)
    assert await generate_document_number(db, "GR", MARCH) == "GR/2026/03/0001"
    assert await generate_document_number(db, "BILL", APRIL) == "BILL/2026/04/0001"
