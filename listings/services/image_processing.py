from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError
from structlog import get_logger

logger = get_logger()

MAX_IMAGE_SIZE = (1920, 1080)
WEBP_QUALITY = 85


def to_webp(raw: bytes) -> tuple[bytes, str]:
    """
    Re-encode an upload as WebP, fitted inside MAX_IMAGE_SIZE.
    Returns (bytes, content_type); unreadable images are passed through as-is.
    """
    try:
        with Image.open(BytesIO(raw)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            img.thumbnail(MAX_IMAGE_SIZE, Image.LANCZOS)
            out = BytesIO()
            img.save(out, format="WEBP", quality=WEBP_QUALITY, method=4)
            return out.getvalue(), "image/webp"
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Image conversion failed, storing original", error=str(e), size=len(raw))
        return raw, ""


def webp_filename(filename: str) -> str:
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    return f"{stem or 'image'}.webp"
