from __future__ import annotations

from contextvars import ContextVar, Token
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Mapping
from uuid import uuid4

from pydantic import BaseModel

REQUEST_ID_CONTEXT: ContextVar[str] = ContextVar("request_id", default="-")
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

HANDLER_NAME = "grantwright-json"
# Per-request INFO lines from these clients duplicate our own upstream events.
CHATTY_LOGGERS = ("httpx", "httpcore")

REDACTED = "[REDACTED]"
# Keys compared after lowercasing and dropping "-" / "_".
SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "setcookie",
        "apikey",
        "password",
        "email",
        "contactemail",
        "phone",
    }
)
SENSITIVE_KEY_SUFFIXES = ("token", "secret", "apikey", "rolekey", "privatekey", "servicekey")

# Order matters: bearer tokens and JWTs are scrubbed before the generic patterns see them.
VALUE_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}"), "[REDACTED_JWT]"),
    (re.compile(r"\bAIza[0-9A-Za-z_-]{35}\b"), "[REDACTED_GOOGLE_API_KEY]"),
    (re.compile(r"(?i)([?&](?:key|apikey|api_key)=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
    (re.compile(r"(?<![\w+])\+\d{1,3}(?:[\s.-]?\(?\d{1,4}\)?){2,4}\b"), "[REDACTED_PHONE]"),
)


def normalize_request_id(candidate: str | None) -> str:
    trimmed = (candidate or "").strip()
    return trimmed if REQUEST_ID_PATTERN.fullmatch(trimmed) else str(uuid4())


def set_request_id(request_id: str) -> Token[str]:
    return REQUEST_ID_CONTEXT.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    REQUEST_ID_CONTEXT.reset(token)


def get_request_id() -> str:
    return REQUEST_ID_CONTEXT.get()


def is_sensitive_key(key: str) -> bool:
    compact = re.sub(r"[-_\s]", "", key.lower())
    return compact in SENSITIVE_KEYS or compact.endswith(SENSITIVE_KEY_SUFFIXES)


def redact_text(value: str, *, max_length: int = 240) -> str:
    for pattern, replacement in VALUE_REDACTIONS:
        value = pattern.sub(replacement, value)
    if len(value) > max_length:
        return f"{value[:max_length]}...[truncated]"
    return value


def sanitize_for_logging(value: Any, *, max_string_length: int = 240) -> Any:
    """Make a log field safe to emit: secrets and contact details redacted, long text clipped."""
    if isinstance(value, str):
        return redact_text(value, max_length=max_string_length)
    if isinstance(value, (bytes, bytearray)):
        return f"[{len(value)} bytes]"
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED
            if is_sensitive_key(str(key))
            else sanitize_for_logging(item, max_string_length=max_string_length)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        items = [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
        return tuple(items) if isinstance(value, tuple) else items
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True


# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", get_request_id()),
        }
        payload.update(
            (key, sanitize_for_logging(value))
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if any(handler.get_name() == HANDLER_NAME for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
