from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    CAPABILITY_VIOLATION = "CAPABILITY_VIOLATION"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    QUERY_FAILED = "QUERY_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    ENGINE_ERROR = "ENGINE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AdapterError(RuntimeError):
    """Base error crossing the adapter boundary.

    The message is always safe to hand back to a caller: it never carries a
    password or a raw connection string.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    prefix: str = "Internal error"

    def __init__(self, message: str):
        super().__init__(message)
        self.detail = message

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def message(self) -> str:
        return f"{self.prefix}: {self.detail}"

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class CapabilityViolation(AdapterError):
    kind = ErrorKind.CAPABILITY_VIOLATION
    prefix = "Capability violation"


class ConnectionFailed(AdapterError):
    kind = ErrorKind.CONNECTION_FAILED
    prefix = "Connection failed"


class QueryFailed(AdapterError):
    kind = ErrorKind.QUERY_FAILED
    prefix = "Query execution failed"


class InvalidInput(AdapterError):
    kind = ErrorKind.INVALID_INPUT
    prefix = "Invalid input"


class EngineSpecific(AdapterError):
    kind = ErrorKind.ENGINE_ERROR

    def __init__(self, engine: str, message: str):
        super().__init__(message)
        self.engine = engine

    @property
    def message(self) -> str:
        return f"Engine error ({self.engine}): {self.detail}"


class ConfigurationError(AdapterError):
    kind = ErrorKind.CONFIG_ERROR
    prefix = "Configuration error"


class InternalError(AdapterError):
    kind = ErrorKind.INTERNAL_ERROR
    prefix = "Internal error"


_KEY_VALUE_SECRET = re.compile(r"(?i)\b(password|passwd|pwd)\s*=\s*('[^']*'|\"[^\"]*\"|\S+)")
_URL_CREDENTIALS = re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://[^:/@\s]+):[^@\s]+@")


def redact(text: Any, secret: Optional[str] = None) -> str:
    """Strip credentials from a driver message before it leaves the adapter."""
    cleaned = str(text)
    if secret:
        cleaned = cleaned.replace(secret, "***")
    cleaned = _KEY_VALUE_SECRET.sub(lambda m: f"{m.group(1)}=***", cleaned)
    cleaned = _URL_CREDENTIALS.sub(lambda m: f"{m.group(1)}:***@", cleaned)
    return cleaned.strip()
