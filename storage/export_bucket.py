from __future__ import annotations

import io
import os
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import BinaryIO, Dict, Iterable, Iterator, Optional
from uuid import uuid4

from settings import get_settings


class ExportBucket:
    """Holds published export objects, on disk or in memory.

    Writers stage their data and only publish it when the ``with`` block exits
    cleanly, so readers never observe a half-written export.
    """

    def __init__(self, name: str, root_path: Optional[Path] = None) -> None:
        self.name = name
        self._objects: Dict[str, bytes] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def open_writer(self, key: str) -> Iterator[BinaryIO]:
        """Yield a binary handle whose contents replace ``key`` on success."""

        if self.root_path:
            path = self.object_path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            staging = path.with_name(f".{path.name}.{uuid4().hex}.partial")
            try:
                with staging.open("wb") as handle:
                    yield handle
                os.replace(staging, path)
            finally:
                if staging.exists():
                    staging.unlink()
            return

        buffer = io.BytesIO()
        try:
            yield buffer
            with self._lock:
                self._objects[key] = buffer.getvalue()
        finally:
            buffer.close()

    def get_object(self, key: str) -> bytes:
        with self._lock:
            data = self._objects.get(key)
            if data is not None:
                return data

        if self.root_path:
            path = self.object_path(key)
            if path.is_file():
                return path.read_bytes()

        raise KeyError(f"Object with key {key!r} not found in bucket {self.name!r}.")

    def exists(self, key: str) -> bool:
        with self._lock:
            if key in self._objects:
                return True
        return bool(self.root_path) and self.object_path(key).is_file()

    def object_path(self, key: str) -> Path:
        if not self.root_path:
            raise KeyError(f"Bucket {self.name!r} is not backed by a directory.")
        return self.root_path / key

    def list_objects(self) -> Iterable[str]:
        with self._lock:
            keys = set(self._objects.keys())

        if self.root_path:
            for path in self.root_path.rglob("*"):
                if path.is_file() and not path.name.endswith(".partial"):
                    keys.add(path.relative_to(self.root_path).as_posix())

        return sorted(keys)


@lru_cache
def build_default_bucket(
    name: Optional[str] = None,
    root_path: Optional[str] = None,
) -> ExportBucket:
    settings = get_settings()
    bucket_name = settings.bucket_name if name is None else name
    bucket_root = settings.bucket_root_path if root_path is None else root_path
    path = Path(bucket_root) if bucket_root else None
    return ExportBucket(name=bucket_name, root_path=path)
