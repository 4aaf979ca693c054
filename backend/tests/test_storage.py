from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from grantwright.config import Settings
from grantwright.storage import (
    InMemoryBlobStorage,
    StorageError,
    SupabaseBlobStorage,
    build_blob_storage,
    safe_object_name,
)


class FakeBucketApi:
    def __init__(self, storage: FakeStorageApi, bucket: str) -> None:
        self._storage = storage
        self._bucket = bucket

    def upload(self, path: str, content: bytes, options: dict[str, str]) -> None:
        self._storage.uploads.append((self._bucket, path, options))
        self._storage.objects[(self._bucket, path)] = content

    def download(self, path: str) -> bytes:
        if (self._bucket, path) not in self._storage.objects:
            raise RuntimeError("Object not found")
        return self._storage.objects[(self._bucket, path)]

    def get_public_url(self, path: str) -> str:
        return f"https://project.supabase.co/storage/v1/object/public/{self._bucket}/{path}?"

    def remove(self, paths: list[str]) -> None:
        for path in paths:
            self._storage.objects.pop((self._bucket, path), None)


class FakeStorageApi:
    def __init__(self, buckets: list[str] | None = None) -> None:
        self.buckets = [SimpleNamespace(name=name, id=name) for name in buckets or []]
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.uploads: list[tuple[str, str, dict[str, str]]] = []
        self.objects: dict[tuple[str, str], bytes] = {}

    def from_(self, bucket: str) -> FakeBucketApi:
        return FakeBucketApi(self, bucket)

    def list_buckets(self) -> list[SimpleNamespace]:
        return self.buckets

    def create_bucket(self, bucket: str, options: dict[str, Any]) -> None:
        self.created.append((bucket, options))
        self.buckets.append(SimpleNamespace(name=bucket, id=bucket))


def _storage(buckets: list[str] | None = None) -> tuple[SupabaseBlobStorage, FakeStorageApi]:
    api = FakeStorageApi(buckets)
    client = SimpleNamespace(storage=api)
    return SupabaseBlobStorage(Settings(bucket_file_size_limit=1024), client=client), api


def test_safe_object_name_strips_directories_and_unsafe_characters() -> None:
    assert safe_object_name("../../etc/passwd") == "passwd"
    assert safe_object_name("CV Jane (final).pdf") == "CV_Jane_final_.pdf"
    assert safe_object_name(None) == "upload.bin"


def test_in_memory_storage_round_trip_and_public_url() -> None:
    storage = InMemoryBlobStorage(public_base_url="http://supabase.test/")
    storage.upload(bucket="proposal-annexes", path="p1/a b.pdf", content=b"pdf", content_type="application/pdf")

    assert storage.download(bucket="proposal-annexes", path="p1/a b.pdf") == b"pdf"
    assert storage.content_type(bucket="proposal-annexes", path="p1/a b.pdf") == "application/pdf"
    assert (
        storage.public_url(bucket="proposal-annexes", path="p1/a b.pdf")
        == "http://supabase.test/storage/v1/object/public/proposal-annexes/p1/a%20b.pdf"
    )
    storage.remove(bucket="proposal-annexes", paths=["p1/a b.pdf"])
    with pytest.raises(StorageError):
        storage.download(bucket="proposal-annexes", path="p1/a b.pdf")


def test_supabase_upload_creates_missing_bucket_once() -> None:
    storage, api = _storage()

    storage.upload(bucket="partner-assets", path="p/logo-1", content=b"png", content_type="image/png")
    storage.upload(bucket="partner-assets", path="p/logo-2", content=b"png", content_type="image/png")

    assert api.created == [("partner-assets", {"public": True, "file_size_limit": 1024})]
    assert api.uploads[0] == ("partner-assets", "p/logo-1", {"content-type": "image/png", "upsert": "true"})


def test_supabase_existing_bucket_is_not_recreated() -> None:
    storage, api = _storage(["proposal-annexes"])

    storage.ensure_bucket("proposal-annexes")

    assert api.created == []


def test_supabase_public_url_drops_trailing_query_marker() -> None:
    storage, _ = _storage()

    assert (
        storage.public_url(bucket="partner-assets", path="p/logo-1")
        == "https://project.supabase.co/storage/v1/object/public/partner-assets/p/logo-1"
    )


def test_supabase_download_errors_become_storage_errors() -> None:
    storage, _ = _storage(["proposal-annexes"])

    with pytest.raises(StorageError, match="download failed"):
        storage.download(bucket="proposal-annexes", path="missing.pdf")


def test_build_blob_storage_selects_backend() -> None:
    assert isinstance(build_blob_storage(Settings(storage_backend="memory")), InMemoryBlobStorage)
    with pytest.raises(StorageError, match="Unsupported STORAGE_BACKEND"):
        build_blob_storage(Settings(storage_backend="s3"))
