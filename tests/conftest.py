import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="listings-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmpdir}/test.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["IMAGE_BACKUP_DIR"] = os.path.join(_tmpdir, "backups")
os.environ.pop("REDIS_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from listings.database import SessionLocal, engine
from listings.dependencies.rate_limit import admin_limiter, login_limiter, register_limiter
from listings.main import app
from listings.models import Base, Property, User
from listings.models.user import default_agent_profile
from listings.security import create_access_token, hash_password

PASSWORD = "Xq7!home"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def client():
    for limiter in (login_limiter, register_limiter, admin_limiter):
        app.dependency_overrides[limiter] = lambda: None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_user(phone, role="user", status="active", full_name="Test User", avatar=None) -> User:
    async with SessionLocal() as session:
        user = User(
            full_name=full_name,
            phone=phone,
            password_hash=PASSWORD_HASH,
            role=role,
            status=status,
            avatar=avatar,
            agent_profile=default_agent_profile() if role == "agent" else None,
        )
        session.add(user)
        await session.commit()
        return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id=str(user.id), role=user.role)}"}


@pytest_asyncio.fixture
async def superadmin():
    return await create_user("+252610000001", role="superadmin", full_name="Kobac Admin")


@pytest_asyncio.fixture
async def agent():
    return await create_user("+252610000002", role="agent", full_name="Amina Agent", avatar="https://cdn.example.com/amina.webp")


@pytest_asyncio.fixture
async def other_agent():
    return await create_user("+252610000003", role="agent", full_name="Omar Agent")


@pytest_asyncio.fixture
async def member():
    return await create_user("+252610000004", role="user", full_name="Hodan Member")


def listing_payload(**overrides) -> dict:
    payload = {
        "title": "Modern villa",
        "description": "Four bedroom villa close to the beach",
        "price": 250000,
        "location": "Lido road",
        "district": "Hodan",
        "beds": 4,
        "baths": 3,
        "propertyType": "villa",
        "listingType": "sale",
        "thumbnailImage": "https://pub-abc.r2.dev/listings/uploads/thumb.webp",
        "images": [
            "https://pub-abc.r2.dev/listings/uploads/thumb.webp",
            "https://pub-abc.r2.dev/listings/uploads/kitchen.webp",
        ],
    }
    payload.update(overrides)
    return payload


async def create_listing(client, user, **overrides) -> dict:
    response = await client.post("/api/properties", json=listing_payload(**overrides), headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def load_property(property_id: int) -> Property:
    from sqlalchemy import select

    async with SessionLocal() as session:
        return (await session.execute(select(Property).where(Property.property_id == property_id))).scalars().one()


async def load_user(user_id) -> User:
    async with SessionLocal() as session:
        return await session.get(User, user_id)
