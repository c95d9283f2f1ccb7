"""Opaque storage for uploaded images and resource files."""

from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass

import structlog

from worksheets.db.database import get_db

logger = structlog.get_logger(__name__)


@dataclass
class Asset:
    asset_id: str
    filename: str
    content_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


def store_asset(data: bytes, filename: str = "", content_type: str | None = None) -> str:
    """Store bytes and return the new asset id.

    Raises:
        ValueError: If ``data`` is empty
    """
    if not data:
        raise ValueError("Cannot store an empty asset")
    if content_type is None:
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"

    asset_id = str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            "INSERT INTO assets (asset_id, filename, content_type, data) VALUES (?, ?, ?, ?)",
            (asset_id, filename, content_type, data),
        )

    logger.debug("assets.stored", asset_id=asset_id, filename=filename, size=len(data))
    return asset_id


def get_asset(asset_id: str) -> Asset | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM assets WHERE asset_id = ?", (asset_id,)).fetchone()

    if row is None:
        return None
    return Asset(
        asset_id=row["asset_id"],
        filename=row["filename"] or "",
        content_type=row["content_type"] or "application/octet-stream",
        data=bytes(row["data"]),
    )


def delete_asset(asset_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM assets WHERE asset_id = ?", (asset_id,))

    deleted = cursor.rowcount > 0
    if deleted:
        logger.debug("assets.deleted", asset_id=asset_id)
    return deleted
