"""
Blob storage for raw uploads and batch partitions.

Objects are addressed by forward-slash keys relative to a storage root. Writes
land in a temporary sibling first and are moved into place with
``os.replace`` so a reader never observes a half-written partition.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from flask import Flask, current_app

from .exceptions import StorageReadError, StorageWriteError
from .utils import ensure_json_serializable, resolve_storage_directory

BLOB_STORE_EXTENSION_KEY = "attendance_blob_store"


class BlobStore(Protocol):
    def put(self, path: str, data: bytes) -> str: ...

    def get(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...

    def delete(self, path: str) -> None: ...


class LocalBlobStore:
    """Filesystem-backed blob store rooted at a single directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path.lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Storage path escapes the storage root: {path}")
        return candidate

    def put(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageWriteError(path, str(exc)) from exc
        return path

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageReadError(path, str(exc)) from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def delete(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)


def put_json(store: BlobStore, path: str, payload: Any) -> str:
    """Serialize ``payload`` deterministically and store it at ``path``."""

    serialized = json.dumps(ensure_json_serializable(payload), indent=2, sort_keys=True)
    return store.put(path, serialized.encode("utf-8"))


def get_json(store: BlobStore, path: str) -> Any:
    raw = store.get(path)
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StorageReadError(path, f"invalid JSON ({exc})") from exc


def get_blob_store(app: Flask | None = None) -> BlobStore:
    """
    Return (and cache) the blob store configured for ``app``.

    Tests and alternative deployments may pre-populate
    ``app.extensions['attendance_blob_store']`` with another implementation.
    """

    app = app if app is not None else current_app
    store = app.extensions.get(BLOB_STORE_EXTENSION_KEY)
    if store is None:
        store = LocalBlobStore(resolve_storage_directory(app))
        app.extensions[BLOB_STORE_EXTENSION_KEY] = store
    return store
