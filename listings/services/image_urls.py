from typing import Iterable, Optional
from urllib.parse import urlparse

from listings.config import settings

R2_HOST_MARKERS = ("r2.dev", "r2.cloudflarestorage.com")


def is_r2_url(url: str) -> bool:
    return any(marker in (url or "") for marker in R2_HOST_MARKERS)


def is_local_upload_url(url: str) -> bool:
    return (url or "").startswith("/uploads/")


def resolve_image_url(url: Optional[str]) -> str:
    """Return a servable URL for a stored image reference, or the default image."""
    if not url or not url.strip():
        return settings.DEFAULT_PROPERTY_IMAGE
    url = url.strip()
    if url.startswith(("http://", "https://", "/")):
        return url
    return settings.DEFAULT_PROPERTY_IMAGE


def primary_image_url(thumbnail: Optional[str], images: Optional[Iterable[str]] = None) -> str:
    first = next((i for i in images or [] if i), None)
    return resolve_image_url(thumbnail or first)


def all_image_urls(thumbnail: Optional[str], images: Optional[Iterable[str]] = None) -> list[str]:
    urls = []
    if thumbnail:
        urls.append(resolve_image_url(thumbnail))
    urls.extend(resolve_image_url(i) for i in images or [] if i)
    # dict keeps first-seen order
    return list(dict.fromkeys(urls))


def classify_image_url(url: Optional[str]) -> str:
    if not url or not url.strip():
        return "empty"
    if is_r2_url(url):
        return "r2"
    if is_local_upload_url(url):
        return "local"
    if url.startswith(("http://", "https://")):
        return "external"
    if url.startswith("/"):
        return "relative"
    return "invalid"


def bucket_from_url(url: str) -> Optional[str]:
    """Bucket name encoded in an R2 URL, if any.

    ``https://<bucket>.r2.dev/key`` carries it in the host, path-style
    ``https://<account>.r2.cloudflarestorage.com/<bucket>/key`` in the first path segment.
    """
    parsed = urlparse(url or "")
    host = parsed.hostname or ""
    if host.endswith(".r2.dev"):
        return host[: -len(".r2.dev")].split(".")[0] or None
    if host.endswith(".r2.cloudflarestorage.com"):
        segment = parsed.path.lstrip("/").split("/", 1)[0]
        return segment or None
    return None


def public_url_for_key(key: str) -> str:
    base = settings.R2_PUBLIC_BASE_URL.rstrip("/")
    if base:
        return f"{base}/{key}"
    return f"https://{settings.R2_BUCKET}.r2.dev/{key}"
