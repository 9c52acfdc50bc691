"""Bearer-token authentication on the API surface."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import JWTError, jwt

from procure_ledger.core.config import settings
from procure_ledger.core.security import create_access_token, decode_token
from procure_ledger.db.session import get_session
from procure_ledger.main import app


def _token(claims: dict) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest_asyncio.fixture
async def client(db):
    async def override_get_session():
        yield db

    app.dependency_overrides[get_session] = override_get_session
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


async def _get_receipt(client, token: str | None):
    headers = {"Authorization": f"Bearer {token}"} if token is not None else {}
    return await client.get(f"/api/v1/goods-receipts/{uuid.uuid4()}", headers=headers)


def test_access_token_round_trip():
    subject = str(uuid.uuid4())
    payload = decode_token(create_access_token(subject=subject, role="ACCOUNTANT"))
    assert payload["sub"] == subject
    assert payload["role"] == "ACCOUNTANT"
    assert payload["type"] == "access"


def test_tampered_token_is_rejected():
    token = create_access_token(subject=str(uuid.uuid4()), role="ADMIN")
    with pytest.raises(JWTError):
        decode_token(token.rsplit(".", 1)[0] + ".invalidsignature")


@pytest.mark.asyncio
async def test_valid_token_reaches_the_route(client, users):
    token = create_access_token(subject=str(users["ACCOUNTANT"].id), role="ACCOUNTANT")
    response = await _get_receipt(client, token)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_missing_header_is_401(client):
    response = await _get_receipt(client, None)
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_garbage_token_is_401(client):
    assert (await _get_receipt(client, "not-a-jwt")).status_code == 401


@pytest.mark.asyncio
async def test_non_access_token_is_401(client, users):
    expire = datetime.now(timezone.utc) + timedelta(minutes=5)
    token = _token({"sub": str(users["ADMIN"].id), "exp": expire, "type": "refresh"})
    assert (await _get_receipt(client, token)).status_code == 401


@pytest.mark.asyncio
async def test_expired_token_is_401(client, users):
    expire = datetime.now(timezone.utc) - timedelta(minutes=5)
    token = _token({"sub": str(users["ADMIN"].id), "exp": expire, "type": "access"})
    assert (await _get_receipt(client, token)).status_code == 401


@pytest.mark.asyncio
async def test_subject_must_be_a_uuid(client):
    token = create_access_token(subject="admin@example.com", role="ADMIN")
    assert (await _get_receipt(client, token)).status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_is_401(client, users):
    token = create_access_token(subject=str(uuid.uuid4()), role="ADMIN")
    assert (await _get_receipt(client, token)).status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_is_401(client, db, users):
    user = users["ACCOUNTANT"]
    token = create_access_token(subject=str(user.id), role="ACCOUNTANT")
    user.is_active = False
    await db.commit()

    assert (await _get_receipt(client, token)).status_code == 401
