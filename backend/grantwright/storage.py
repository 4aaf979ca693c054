from __future__ import annotations

import logging
from pathlib import Path
import re
import threading
from typing import Any, Callable, Protocol
from urllib.parse import quote

from grantwright.config import Settings
from grantwright.kv_store import KeyValueStoreError, create_supabase_client

logger = logging.getLogger("grantwright.storage")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(RuntimeError):
    """Raised when blob storage read/write fails."""


class BlobStorage(Protocol):
    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> None: ...

    def download(self, *, bucket: str, path: str) -> bytes: ...

    def public_url(self, *, bucket: str, path: str) -> str: ...

    def remove(self, *, bucket: str, paths: list[str]) -> None: ...

    def ensure_bucket(self, bucket: str) -> None: ...


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"supabase"}:
        return "supabase"
    if normalized in {"memory", "inmemory", "in-memory"}:
        return "memory"
    raise StorageError(f"Unsupported STORAGE_BACKEND '{value}'. Use 'supabase' or 'memory'.")


def safe_object_name(file_name: str | None, *, fallback: str = "upload.bin") -> str:
    base = Path(file_name or "").name.strip()
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base).strip("._")
    return cleaned or fallback


class InMemoryBlobStorage:
    def __init__(self, *, public_base_url: str = "http://localhost:54321") -> None:
        self._objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self._buckets: set[str] = set()
        self._public_base_url = public_base_url.rstrip("/")
        self._lock = threading.Lock()

    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> None:
        with self._lock:
            self._buckets.add(bucket)
            self._objects[(bucket, path)] = (bytes(content), content_type)

    def download(self, *, bucket: str, path: str) -> bytes:
        with self._lock:
            stored = self._objects.get((bucket, path))
        if stored is None:
            raise StorageError(f"Object not found (bucket={bucket}, path={path}).")
        return stored[0]

    def public_url(self, *, bucket: str, path: str) -> str:
        return f"{self._public_base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    def remove(self, *, bucket: str, paths: list[str]) -> None:
        with self._lock:
            for path in paths:
                self._objects.pop((bucket, path), None)

    def ensure_bucket(self, bucket: str) -> None:
        with self._lock:
            self._buckets.add(bucket)

    def content_type(self, *, bucket: str, path: str) -> str | None:
        stored = self._objects.get((bucket, path))
        return stored[1] if stored else None


class SupabaseBlobStorage:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        if client is None:
            try:
                client = create_supabase_client(settings)
            except KeyValueStoreError as exc:
                raise StorageError(str(exc)) from exc
        self._client = client
        self._known_buckets: set[str] = set()

    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> None:
        self.ensure_bucket(bucket)
        self._execute(
            "upload",
            bucket,
            path,
            lambda: self._client.storage.from_(bucket).upload(
                path,
                content,
                {"content-type": content_type or "application/octet-stream", "upsert": "true"},
            ),
        )

    def download(self, *, bucket: str, path: str) -> bytes:
        content = self._execute("download", bucket, path, lambda: self._client.storage.from_(bucket).download(path))
        if not isinstance(content, (bytes, bytearray)):
            raise StorageError(f"Storage download returned no content (bucket={bucket}, path={path}).")
        return bytes(content)

    def public_url(self, *, bucket: str, path: str) -> str:
        url = self._execute("public_url", bucket, path, lambda: self._client.storage.from_(bucket).get_public_url(path))
        return str(url).rstrip("?")

    def remove(self, *, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        self._execute("remove", bucket, ",".join(paths), lambda: self._client.storage.from_(bucket).remove(paths))

    def ensure_bucket(self, bucket: str) -> None:
        if bucket in self._known_buckets:
            return
        buckets = self._execute("list_buckets", bucket, "", lambda: self._client.storage.list_buckets())
        existing = {getattr(item, "name", None) or getattr(item, "id", None) for item in buckets or []}
        if bucket not in existing:
            self._execute(
                "create_bucket",
                bucket,
                "",
                lambda: self._client.storage.create_bucket(
                    bucket,
                    options={"public": True, "file_size_limit": self._settings.bucket_file_size_limit},
                ),
            )
            logger.info("storage_bucket_created", extra={"event": "storage_bucket_created", "bucket": bucket})
        self._known_buckets.add(bucket)

    @staticmethod
    def _execute(operation: str, bucket: str, path: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except StorageError:
            raise
        except Exception as exc:
            logger.warning(
                "storage_operation_failed",
                extra={
                    "event": "storage_operation_failed",
                    "operation": operation,
                    "bucket": bucket,
                    "path": path,
                    "error": str(exc),
                },
            )
            raise StorageError(f"Storage {operation} failed (bucket={bucket}, path={path}): {exc}") from exc


def build_blob_storage(settings: Settings) -> BlobStorage:
    backend = _normalize_backend(settings.storage_backend)
    if backend == "memory":
        return InMemoryBlobStorage(public_base_url=settings.supabase_url or "http://localhost:54321")
    return SupabaseBlobStorage(settings)
