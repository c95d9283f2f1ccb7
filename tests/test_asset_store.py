"""Tests for the asset store."""

import pytest

from worksheets.db import asset_store


class TestAssetStore:
    """Store, fetch and delete opaque assets."""

    def test_store_and_get(self, db_path):
        asset_id = asset_store.store_asset(b"\x89PNG data", "diagram.png")
        asset = asset_store.get_asset(asset_id)
        assert asset.data == b"\x89PNG data"
        assert asset.filename == "diagram.png"
        assert asset.content_type == "image/png"
        assert asset.is_image

    def test_explicit_content_type_wins(self, db_path):
        asset_id = asset_store.store_asset(b"x", "notes.bin", content_type="application/pdf")
        asset = asset_store.get_asset(asset_id)
        assert asset.content_type == "application/pdf"
        assert not asset.is_image

    def test_unknown_extension_falls_back(self, db_path):
        asset = asset_store.get_asset(asset_store.store_asset(b"x", "blob"))
        assert asset.content_type == "application/octet-stream"

    def test_empty_rejected(self, db_path):
        with pytest.raises(ValueError):
            asset_store.store_asset(b"", "empty.png")

    def test_ids_are_unique(self, db_path):
        ids = {asset_store.store_asset(b"x", "a.txt") for _ in range(5)}
        assert len(ids) == 5

    def test_delete(self, db_path):
        asset_id = asset_store.store_asset(b"x", "a.txt")
        assert asset_store.delete_asset(asset_id)
        assert asset_store.get_asset(asset_id) is None
        assert not asset_store.delete_asset(asset_id)
