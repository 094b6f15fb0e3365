import base64
import io
from datetime import datetime, timezone

import pandas as pd
from fastapi import HTTPException
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.models.property import DeletionStatus, Property
from listings.services import cache
from listings.services.storage import storage_configured, upload_bytes

logger = get_logger()

EXPORT_COLUMNS = [
    "propertyId", "title", "district", "location", "propertyType", "listingType",
    "status", "price", "viewCount", "uniqueViewCount", "agent", "createdAt",
]
CONTENT_TYPES = {"csv": "text/csv", "pdf": "application/pdf"}


async def _properties_frame(session: AsyncSession) -> pd.DataFrame:
    rows = (await session.execute(
        select(Property)
        .where(Property.deletion_status == DeletionStatus.ACTIVE.value)
        .order_by(Property.property_id)
    )).scalars().all()
    df = pd.DataFrame([
        {
            "propertyId": p.property_id,
            "title": p.title,
            "district": p.district,
            "location": p.location,
            "propertyType": p.property_type,
            "listingType": p.listing_type,
            "status": p.status,
            "price": p.price,
            "viewCount": p.view_count or 0,
            "uniqueViewCount": p.unique_view_count or 0,
            "agent": (p.agent or {}).get("name", ""),
            "createdAt": p.created_at.isoformat() if p.created_at else "",
        }
        for p in rows
    ], columns=EXPORT_COLUMNS)
    return df


async def generate_property_report(session: AsyncSession):
    cache_key = "report:properties"
    cached = await cache.cache_get_json(cache_key)
    if cached:
        return cached

    df = await _properties_frame(session)
    month_prefix = datetime.now(timezone.utc).strftime("%Y-%m")
    created_series = df["createdAt"].astype(str).fillna("")

    report = {
        "total_properties": len(df),
        "new_properties_month": int(created_series.str.startswith(month_prefix).sum()),
        "for_sale": int((df["listingType"] == "sale").sum()),
        "for_rent": int((df["listingType"] == "rent").sum()),
        "total_views": int(df["viewCount"].sum()) if len(df) else 0,
        "average_price": round(float(df["price"].mean()), 2) if len(df) else 0,
        "by_district": {k: int(v) for k, v in df["district"].value_counts().items()},
        "title": "Property Report",
    }
    await cache.cache_set_json(cache_key, report, settings.REPORT_CACHE_SECONDS)
    return report


def _data_uri(content: bytes, content_type: str) -> str:
    b64 = base64.b64encode(content).decode("ascii")
    return f"data:{content_type};base64,{b64}"


def _render_pdf(df: pd.DataFrame) -> bytes:
    pdf_buffer = io.BytesIO()
    doc = SimpleDocTemplate(pdf_buffer, pagesize=landscape(A4))
    columns = ["propertyId", "title", "district", "listingType", "price", "viewCount"]
    data_for_table = [columns] + df[columns].astype(str).values.tolist() if len(df) else [["message", "No data available"]]
    doc.build([Table(data_for_table)])
    return pdf_buffer.getvalue()


async def export_report(session: AsyncSession, report_type: str) -> str:
    """Render the listing export and return where to download it."""
    if report_type not in CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported report type, use csv or pdf")

    df = await _properties_frame(session)
    if report_type == "csv":
        csv_buffer = io.StringIO()
        df.to_csv(csv_buffer, index=False)
        content = csv_buffer.getvalue().encode("utf-8")
    else:
        content = _render_pdf(df)

    content_type = CONTENT_TYPES[report_type]
    if storage_configured():
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        key = f"{settings.R2_KEY_PREFIX.strip('/')}/reports/properties_{stamp}.{report_type}"
        try:
            uploaded = await upload_bytes(key, content, content_type)
            return uploaded["url"]
        except HTTPException as e:
            logger.warning("Report upload failed, returning inline copy", report_type=report_type, error=e.detail)
    # Fallback: return data URI so client can still download
    return _data_uri(content, content_type)
