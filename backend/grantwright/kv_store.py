from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Protocol

from supabase import create_client

from grantwright.config import Settings

logger = logging.getLogger("grantwright.kv_store")


class KeyValueStoreError(RuntimeError):
    """Raised when the record store cannot be read or written."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def get_by_prefix(self, prefix: str) -> list[dict[str, Any]]: ...


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"supabase", "postgres"}:
        return "supabase"
    if normalized in {"memory", "inmemory", "in-memory"}:
        return "memory"
    raise KeyValueStoreError(f"Unsupported STORE_BACKEND '{value}'. Use 'supabase' or 'memory'.")


def create_supabase_client(settings: Settings) -> Any:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise KeyValueStoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured.")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._rows.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._rows[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._rows.pop(key, None)

    def get_by_prefix(self, prefix: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(value) for key, value in self._rows.items() if key.startswith(prefix)]


class SupabaseKeyValueStore:
    """Key/value rows (`key` text primary key, `value` jsonb) in one Supabase table."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._table = settings.kv_table
        self._client = client or create_supabase_client(settings)

    def get(self, key: str) -> dict[str, Any] | None:
        response = self._execute(
            "get",
            key,
            lambda: self._client.table(self._table).select("value").eq("key", key).limit(1).execute(),
        )
        rows = response.data or []
        if not rows:
            return None
        return rows[0].get("value")

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._execute(
            "set",
            key,
            lambda: self._client.table(self._table).upsert({"key": key, "value": value}).execute(),
        )

    def delete(self, key: str) -> None:
        self._execute(
            "delete",
            key,
            lambda: self._client.table(self._table).delete().eq("key", key).execute(),
        )

    def get_by_prefix(self, prefix: str) -> list[dict[str, Any]]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        response = self._execute(
            "get_by_prefix",
            prefix,
            lambda: self._client.table(self._table).select("key, value").like("key", f"{escaped}%").execute(),
        )
        return [row.get("value") for row in response.data or [] if isinstance(row.get("value"), dict)]

    def _execute(self, operation: str, key: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except Exception as exc:
            logger.warning(
                "kv_operation_failed",
                extra={"event": "kv_operation_failed", "operation": operation, "key": key, "error": str(exc)},
            )
            raise KeyValueStoreError(f"Record store {operation} failed for '{key}': {exc}") from exc


def build_key_value_store(settings: Settings) -> KeyValueStore:
    backend = _normalize_backend(settings.store_backend)
    if backend == "memory":
        return InMemoryKeyValueStore()
    return SupabaseKeyValueStore(settings)
