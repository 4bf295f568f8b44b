"""
Integration tests for per-shop JSON document persistence.
"""
import json

import pytest

from inventory.document_store import DocumentStore, sanitize_shop


@pytest.mark.unit
class TestSanitizeShop:

    @pytest.mark.parametrize("raw, expected", [
        ("my-shop", "my-shop"),
        ("My Shop", "my_shop"),
        ("../../etc", ".._.._etc"),
        ("shop.example.com", "shop.example.com"),
        ("", "default"),
        (None, "default"),
        ("  ", "default"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_shop(raw) == expected


@pytest.mark.integration
class TestDocumentStore:

    def test_write_then_read(self, store):
        path = store.path("shop", "batches.json")
        store.write(path, {"shop": "shop", "batches": [{"id": "LOT-1", "grams": 12.5}]})

        assert store.read(path) == {"shop": "shop", "batches": [{"id": "LOT-1", "grams": 12.5}]}
        assert path == store.data_dir / "shop" / "batches.json"

    def test_missing_document_reads_as_default(self, store):
        assert store.read(store.path("shop", "nothing.json")) == {}
        assert store.read(store.path("shop", "nothing.json"), default=list) == []

    def test_write_leaves_no_temporary_files(self, store):
        path = store.path("shop", "purchase-orders", "2025.json")
        store.write(path, {"year": 2025, "orders": []})
        store.write(path, {"year": 2025, "orders": [{"id": "po_1"}]})

        assert [p.name for p in path.parent.iterdir()] == ["2025.json"]
        assert store.read(path)["orders"] == [{"id": "po_1"}]

    def test_corrupt_document_raises(self, store):
        path = store.path("shop", "batches.json")
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(json.JSONDecodeError):
            store.read(path)

    def test_list_documents_sorted(self, store):
        for year in (2026, 2024, 2025):
            store.write(store.path("shop", "purchase-orders", f"{year}.json"), {"year": year})

        names = [p.name for p in store.list_documents("shop", "purchase-orders")]

        assert names == ["2024.json", "2025.json", "2026.json"]
        assert store.list_documents("other", "purchase-orders") == []

    def test_compact_output(self, temp_dir):
        compact = DocumentStore(temp_dir / "compact", pretty=False)
        path = compact.path("shop", "doc.json")
        compact.write(path, {"a": 1})

        assert path.read_text(encoding="utf-8") == '{"a": 1}'
