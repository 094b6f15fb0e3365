import re
from io import BytesIO

import pytest
from fastapi import HTTPException
from PIL import Image

from conftest import auth_headers, load_user
from listings.config import settings
from listings.services import storage
from listings.services.image_processing import to_webp, webp_filename


class FakeS3:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType, CacheControl):
        self.objects[Key] = {"bucket": Bucket, "body": Body, "content_type": ContentType}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def head_bucket(self, Bucket):
        return {}

    def list_objects_v2(self, Bucket, Prefix, MaxKeys):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))[:MaxKeys]
        return {"Contents": [{"Key": k} for k in keys]}


def png_bytes(size=(64, 48)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def fake_s3(monkeypatch):
    client = FakeS3()
    monkeypatch.setattr(settings, "R2_BUCKET", "kobac-images")
    monkeypatch.setattr(settings, "R2_PUBLIC_BASE_URL", "https://images.example.com/")
    monkeypatch.setattr(storage, "get_client", lambda: client)
    return client


def test_sanitize_filename():
    assert storage.sanitize_filename("My House (1).JPG") == "my-house-1-.jpg"
    assert storage.sanitize_filename("../../etc/passwd") == "passwd"
    assert storage.sanitize_filename("C:\\photos\\villa.png") == "villa.png"
    assert storage.sanitize_filename("") == "file"
    assert storage.sanitize_filename("...") == "file"


def test_build_object_key():
    key = storage.build_object_key("Front Door.webp", listing_id="42")
    assert re.fullmatch(r"listings/uploads/listings/42/\d{13}-[0-9a-f]{8}-front-door\.webp", key)

    avatar = storage.build_object_key("me.webp", folder="avatars/abc")
    assert avatar.startswith("listings/avatars/abc/")


def test_storage_not_configured():
    assert storage.storage_configured() is False
    with pytest.raises(HTTPException) as exc:
        storage.get_client()
    assert exc.value.status_code == 503


def test_to_webp_converts_and_fits():
    body, content_type = to_webp(png_bytes((4000, 1000)))
    assert content_type == "image/webp"
    with Image.open(BytesIO(body)) as img:
        assert img.format == "WEBP"
        assert img.size == (1920, 480)


def test_to_webp_passes_through_unreadable_bytes():
    assert to_webp(b"not an image") == (b"not an image", "")


def test_webp_filename():
    assert webp_filename("villa.front.png") == "villa.front.webp"
    assert webp_filename("noext") == "noext.webp"


@pytest.mark.asyncio
async def test_upload_image(fake_s3):
    stored = await storage.upload_image(png_bytes(), "Kitchen.png", "image/png", listing_id="7")
    assert stored["content_type"] == "image/webp"
    assert stored["key"].endswith("-kitchen.webp")
    assert stored["url"] == f"https://images.example.com/{stored['key']}"
    assert fake_s3.objects[stored["key"]]["bucket"] == "kobac-images"

    with pytest.raises(HTTPException) as exc:
        await storage.upload_image(b"", "empty.png")
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_upload_images_endpoint(client, agent, member, fake_s3):
    files = [
        ("files[]", ("front.png", png_bytes(), "image/png")),
        ("files[]", ("plan.pdf", b"%PDF-1.4", "application/pdf")),
    ]
    response = await client.post(
        "/api/uploads/images", files=files, data={"listingId": "12"}, headers=auth_headers(agent)
    )
    assert response.status_code == 201
    uploaded = response.json()["data"]["files"]
    assert [f["contentType"] for f in uploaded] == ["image/webp", "application/pdf"]
    assert all("/listings/12/" in f["key"] for f in uploaded)

    forbidden = await client.post("/api/uploads/images", files=files, headers=auth_headers(member))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_avatar_upload(client, member, agent, fake_s3):
    files = {"file": ("me.png", png_bytes(), "image/png")}
    response = await client.post(f"/api/uploads/avatar/{member.id}", files=files, headers=auth_headers(member))
    assert response.status_code == 200
    avatar = response.json()["data"]["avatar"]
    assert avatar.startswith(f"https://images.example.com/listings/avatars/{member.id}/")
    assert (await load_user(member.id)).avatar == avatar

    other = await client.post(f"/api/uploads/avatar/{agent.id}", files=files, headers=auth_headers(member))
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_delete_image_endpoint(client, superadmin, agent, fake_s3):
    fake_s3.objects["listings/uploads/old.webp"] = {}
    url = "/api/uploads/images"

    assert (await client.delete(url, params={"key": "listings/uploads/old.webp"}, headers=auth_headers(agent))).status_code == 403
    outside = await client.delete(url, params={"key": "other/old.webp"}, headers=auth_headers(superadmin))
    assert outside.status_code == 400

    response = await client.delete(url, params={"key": "listings/uploads/old.webp"}, headers=auth_headers(superadmin))
    assert response.status_code == 200
    assert fake_s3.objects == {}


@pytest.mark.asyncio
async def test_storage_diagnostics(client, superadmin, fake_s3, monkeypatch):
    monkeypatch.setattr(settings, "R2_ENDPOINT", "https://acc.r2.cloudflarestorage.com")
    monkeypatch.setattr(settings, "R2_ACCESS_KEY_ID", "key")
    monkeypatch.setattr(settings, "R2_SECRET_ACCESS_KEY", "secret")
    fake_s3.objects["listings/uploads/a.webp"] = {}
    fake_s3.objects["elsewhere/b.webp"] = {}
    checked = []

    async def fake_check_url(url):
        checked.append(url)
        return {"url": url, "status_code": 200, "ok": True}

    monkeypatch.setattr(storage, "check_url", fake_check_url)

    response = await client.get("/api/admin/diagnostics/storage", headers=auth_headers(superadmin))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["bucket"] == {"status": "ok", "bucket": "kobac-images"}
    assert data["keys"] == ["listings/uploads/a.webp"]
    assert data["sample"]["ok"] is True
    assert checked == ["https://images.example.com/listings/uploads/a.webp"]


@pytest.mark.asyncio
async def test_storage_diagnostics_when_disabled(client, superadmin):
    response = await client.get("/api/admin/diagnostics/storage", headers=auth_headers(superadmin))
    assert response.json()["data"] == {"bucket": {"status": "disabled"}, "keys": [], "sample": None}
