import re
import secrets
import time
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException
from httpx import AsyncClient
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

from listings.config import settings
from listings.services.image_processing import to_webp, webp_filename
from listings.services.image_urls import public_url_for_key

logger = get_logger()

_client = None


def storage_configured() -> bool:
    return all((
        settings.R2_ENDPOINT,
        settings.R2_ACCESS_KEY_ID,
        settings.R2_SECRET_ACCESS_KEY,
        settings.R2_BUCKET,
    ))


def get_client():
    global _client
    if not storage_configured():
        raise HTTPException(status_code=503, detail="Object storage is not configured")
    if _client is None:
        _client = boto3.client(
            "s3",
            region_name="auto",
            endpoint_url=settings.R2_ENDPOINT,
            aws_access_key_id=settings.R2_ACCESS_KEY_ID,
            aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            config=BotoConfig(s3={"addressing_style": "path"}, retries={"max_attempts": 3}),
        )
    return _client


def sanitize_filename(filename: Optional[str]) -> str:
    name = (filename or "").rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    name = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-.")
    return name.lower()[:100] or "file"


def build_object_key(filename: str, listing_id: Optional[str] = None, folder: str = "uploads") -> str:
    """``{prefix}/{folder}[/listings/{listing_id}]/{ms}-{hex8}-{name}``"""
    parts = [settings.R2_KEY_PREFIX.strip("/"), folder]
    if listing_id:
        parts += ["listings", sanitize_filename(str(listing_id))]
    name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{sanitize_filename(filename)}"
    return "/".join(p for p in parts if p) + "/" + name


def _storage_error(action: str, e: Exception) -> HTTPException:
    logger.error("Object storage request failed", action=action, bucket=settings.R2_BUCKET, error=str(e))
    return HTTPException(status_code=502, detail=f"Object storage {action} failed")


async def upload_bytes(key: str, body: bytes, content_type: str) -> dict:
    client = get_client()
    try:
        await run_in_threadpool(
            client.put_object,
            Bucket=settings.R2_BUCKET,
            Key=key,
            Body=body,
            ContentType=content_type or "application/octet-stream",
            CacheControl="public, max-age=31536000, immutable",
        )
    except (BotoCoreError, ClientError) as e:
        raise _storage_error("upload", e)
    url = public_url_for_key(key)
    logger.info("Uploaded object", key=key, size=len(body), content_type=content_type)
    return {"key": key, "url": url, "content_type": content_type, "size": len(body)}


async def upload_image(raw: bytes, filename: str, content_type: str = "", listing_id: Optional[str] = None) -> dict:
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file upload")
    body, converted_type = await run_in_threadpool(to_webp, raw)
    if converted_type:
        filename, content_type = webp_filename(filename or "image"), converted_type
    key = build_object_key(filename, listing_id=listing_id)
    return await upload_bytes(key, body, content_type or "application/octet-stream")


async def upload_avatar(raw: bytes, filename: str, user_id: str, content_type: str = "") -> dict:
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file upload")
    body, converted_type = await run_in_threadpool(to_webp, raw)
    if converted_type:
        filename, content_type = webp_filename(filename or "avatar"), converted_type
    key = build_object_key(filename, folder=f"avatars/{user_id}")
    return await upload_bytes(key, body, content_type or "application/octet-stream")


async def delete_object(key: str):
    client = get_client()
    try:
        await run_in_threadpool(client.delete_object, Bucket=settings.R2_BUCKET, Key=key)
    except (BotoCoreError, ClientError) as e:
        raise _storage_error("delete", e)
    logger.info("Deleted object", key=key)


async def list_keys(prefix: str = "", limit: int = 1000) -> list[str]:
    client = get_client()
    try:
        response = await run_in_threadpool(
            client.list_objects_v2, Bucket=settings.R2_BUCKET, Prefix=prefix, MaxKeys=limit
        )
    except (BotoCoreError, ClientError) as e:
        raise _storage_error("list", e)
    return [item["Key"] for item in response.get("Contents", [])]


async def check_bucket() -> dict:
    if not storage_configured():
        return {"status": "disabled"}
    try:
        await run_in_threadpool(get_client().head_bucket, Bucket=settings.R2_BUCKET)
        return {"status": "ok", "bucket": settings.R2_BUCKET}
    except (BotoCoreError, ClientError) as e:
        logger.warning("Bucket check failed", bucket=settings.R2_BUCKET, error=str(e))
        return {"status": "error", "bucket": settings.R2_BUCKET, "error": f"{type(e).__name__}: {e}"}


async def check_url(url: str) -> dict:
    """HEAD a public image URL."""
    try:
        async with AsyncClient(timeout=10.0, follow_redirects=True) as client:
            response = await client.head(url)
        return {"url": url, "status_code": response.status_code, "ok": response.status_code < 400}
    except Exception as e:
        return {"url": url, "status_code": None, "ok": False, "error": f"{type(e).__name__}: {e}"}
