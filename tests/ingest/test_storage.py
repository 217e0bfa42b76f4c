from __future__ import annotations

import pytest

from attendance_app.ingest.exceptions import StorageReadError
from attendance_app.ingest.storage import LocalBlobStore, get_blob_store, get_json, put_json
from attendance_app.ingest.utils import allowed_file, ensure_json_serializable, gathering_storage_prefix


def test_put_get_delete(tmp_path):
    store = LocalBlobStore(tmp_path)

    assert store.put("a/b/c.csv", b"data") == "a/b/c.csv"
    assert store.exists("a/b/c.csv")
    assert store.get("a/b/c.csv") == b"data"
    assert not list((tmp_path / "a" / "b").glob("*.tmp"))

    store.delete("a/b/c.csv")
    store.delete("a/b/c.csv")
    assert not store.exists("a/b/c.csv")


def test_paths_cannot_escape_root(tmp_path):
    store = LocalBlobStore(tmp_path / "root")

    with pytest.raises(ValueError):
        store.put("../outside.csv", b"x")


def test_missing_object_raises_read_error(tmp_path):
    with pytest.raises(StorageReadError):
        LocalBlobStore(tmp_path).get("nope.json")


def test_json_round_trip_is_deterministic(tmp_path):
    store = LocalBlobStore(tmp_path)
    put_json(store, "p.json", {"b": 1, "a": [1, 2]})

    assert store.get("p.json").decode("utf-8").index('"a"') < store.get("p.json").decode("utf-8").index('"b"')
    assert get_json(store, "p.json") == {"a": [1, 2], "b": 1}


def test_invalid_json_raises_read_error(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.put("bad.json", b"{not json")

    with pytest.raises(StorageReadError, match="invalid JSON"):
        get_json(store, "bad.json")


def test_get_blob_store_is_cached_on_app(app, blob_store):
    assert get_blob_store(app) is blob_store


def test_storage_helpers():
    from datetime import date

    assert gathering_storage_prefix("/attendance/", date(2024, 3, 10), 7, "100") == "attendance/2024-03-10/7/100"
    assert allowed_file("export.CSV")
    assert not allowed_file("export.xlsx")
    assert ensure_json_serializable({"when": date(2024, 3, 10), "rows": (1, 2)}) == {
        "when": "2024-03-10",
        "rows": [1, 2],
    }
