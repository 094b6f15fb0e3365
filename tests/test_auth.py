from datetime import timedelta

import pytest

from conftest import PASSWORD, auth_headers, create_user, load_user
from listings.config import settings
from listings.database import SessionLocal
from listings.models import User
from listings.models.base import utcnow
from listings.security import decode_access_token, normalize_phone, password_problem


def test_normalize_phone():
    assert normalize_phone("612345678") == "+252612345678"
    assert normalize_phone("0612345678") == "+252612345678"
    assert normalize_phone("+252 61 234 5678") == "+252612345678"


def test_password_rules():
    assert password_problem("abc") == "Password must be at least 5 characters long."
    assert password_problem("password123") is not None
    assert password_problem("x612345678", "+252612345678") == "Password cannot contain your phone number."
    assert password_problem(PASSWORD, "+252612345678") is None


@pytest.mark.asyncio
async def test_register_user(client):
    response = await client.post(
        "/api/auth/register",
        json={"fullName": "Ali Hassan", "phone": "612345678", "password": PASSWORD},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["phone"] == "+252612345678"
    assert body["data"]["role"] == "user"
    assert body["data"]["status"] == "active"
    assert "passwordHash" not in body["data"]


@pytest.mark.asyncio
async def test_register_agent_is_pending(client):
    response = await client.post(
        "/api/auth/register-agent",
        json={"fullName": "Fadumo Agent", "phone": "0615550000", "password": PASSWORD},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "agent"
    assert data["status"] == "pending_verification"
    assert data["agentProfile"]["blueTickStatus"] == "none"


@pytest.mark.asyncio
async def test_register_rejects_duplicate_and_weak(client):
    payload = {"fullName": "Ali Hassan", "phone": "612345678", "password": PASSWORD}
    assert (await client.post("/api/auth/register", json=payload)).status_code == 201

    duplicate = await client.post("/api/auth/register", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json() == {"success": False, "error": "Phone number already registered"}

    weak = await client.post("/api/auth/register", json={**payload, "phone": "619999999", "password": "qwerty"})
    assert weak.status_code == 400
    assert weak.json()["success"] is False

    bad_phone = await client.post("/api/auth/register", json={**payload, "phone": "12345"})
    assert bad_phone.status_code in (400, 422)


@pytest.mark.asyncio
async def test_login_flow(client):
    user = await create_user("+252611111111")

    wrong = await client.post("/api/auth/login", data={"username": "611111111", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert (await load_user(user.id)).login_attempts == 1

    response = await client.post("/api/auth/login", data={"username": "0611111111", "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    claims = decode_access_token(body["access_token"])
    assert claims["sub"] == str(user.id)
    assert claims["role"] == "user"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    refreshed = await load_user(user.id)
    assert refreshed.login_attempts == 0
    assert refreshed.last_login is not None


@pytest.mark.asyncio
async def test_login_suspended_user(client):
    await create_user("+252612222222", status="suspended")
    response = await client.post("/api/auth/login", data={"username": "612222222", "password": PASSWORD})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me(client, member):
    assert (await client.get("/api/auth/me")).status_code == 401

    response = await client.get("/api/auth/me", headers=auth_headers(member))
    assert response.status_code == 200
    assert response.json()["data"]["fullName"] == "Hodan Member"

    bad = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert bad.json()["error"] == "Invalid token"


@pytest.mark.asyncio
async def test_password_reset_flow(client, member, monkeypatch):
    monkeypatch.setattr(settings, "EXPOSE_RESET_TOKEN", True)

    unknown = await client.post("/api/auth/request-reset", json={"phone": "619999999"})
    assert unknown.status_code == 200
    assert unknown.json()["data"] == {}

    requested = await client.post("/api/auth/request-reset", json={"phone": "0610000004"})
    assert requested.status_code == 200
    issued = requested.json()["data"]
    assert issued["userId"] == str(member.id)
    stored = await load_user(member.id)
    assert stored.password_reset_token_hash != issued["resetToken"]
    assert stored.password_reset_expires is not None

    url = "/api/auth/confirm-reset"
    wrong = await client.post(url, json={"userId": issued["userId"], "token": "0" * 64, "newPassword": "Nw8#house"})
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "Invalid reset token"

    weak = await client.post(url, json={"userId": issued["userId"], "token": issued["resetToken"], "newPassword": "123"})
    assert weak.status_code == 400

    confirmed = await client.post(
        url, json={"userId": issued["userId"], "token": issued["resetToken"], "newPassword": "Nw8#house"}
    )
    assert confirmed.status_code == 200
    assert decode_access_token(confirmed.json()["access_token"])["sub"] == str(member.id)

    reset = await load_user(member.id)
    assert reset.password_reset_token_hash is None
    assert reset.password_changed_at is not None

    # the token works once
    reused = await client.post(
        url, json={"userId": issued["userId"], "token": issued["resetToken"], "newPassword": "Zz9$villa"}
    )
    assert reused.status_code == 400

    old = await client.post("/api/auth/login", data={"username": "610000004", "password": PASSWORD})
    assert old.status_code == 401
    new = await client.post("/api/auth/login", data={"username": "610000004", "password": "Nw8#house"})
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_reset_token_hidden_by_default(client, member):
    response = await client.post("/api/auth/request-reset", json={"phone": "610000004"})
    assert response.status_code == 200
    assert response.json()["data"] == {}
    assert (await load_user(member.id)).password_reset_token_hash is not None

    invalid_phone = await client.post("/api/auth/request-reset", json={"phone": "12345678901"})
    assert invalid_phone.status_code == 400


@pytest.mark.asyncio
async def test_expired_reset_token(client, member, monkeypatch):
    monkeypatch.setattr(settings, "EXPOSE_RESET_TOKEN", True)
    issued = (await client.post("/api/auth/request-reset", json={"phone": "610000004"})).json()["data"]
    async with SessionLocal() as session:
        user = await session.get(User, member.id)
        user.password_reset_expires = utcnow() - timedelta(minutes=1)
        await session.commit()

    response = await client.post(
        "/api/auth/confirm-reset",
        json={"userId": issued["userId"], "token": issued["resetToken"], "newPassword": "Nw8#house"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Reset token has expired. Please request a new one."


@pytest.mark.asyncio
async def test_change_password(client, member):
    url = "/api/auth/change-password"
    assert (await client.post(url, json={"oldPassword": PASSWORD, "newPassword": "Nw8#house"})).status_code == 401

    wrong = await client.post(url, json={"oldPassword": "nope-nope", "newPassword": "Nw8#house"}, headers=auth_headers(member))
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "Current password is incorrect"

    same = await client.post(url, json={"oldPassword": PASSWORD, "newPassword": PASSWORD}, headers=auth_headers(member))
    assert same.status_code == 400

    changed = await client.post(url, json={"oldPassword": PASSWORD, "newPassword": "Nw8#house"}, headers=auth_headers(member))
    assert changed.status_code == 200
    assert (await load_user(member.id)).password_changed_at is not None

    login = await client.post("/api/auth/login", data={"username": "610000004", "password": "Nw8#house"})
    assert login.status_code == 200
