import json
from typing import Any, Dict, Optional

from pydantic import BaseModel


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    return data


def success(engine: str, command: str, data: Any, execution_ms: float, rows_returned: Optional[int] = None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"execution_ms": int(round(execution_ms))}
    if rows_returned is not None:
        meta["rows_returned"] = rows_returned
    return {
        "ok": True,
        "engine": engine,
        "command": command,
        "data": _dump(data),
        "meta": meta,
    }


def failure(engine: str, command: str, code: str, message: str) -> Dict[str, Any]:
    return {
        "ok": False,
        "engine": engine or "",
        "command": command,
        "error": {"code": code, "message": message},
    }


def from_error(engine: str, command: str, exc: Any) -> Dict[str, Any]:
    return failure(engine, command, exc.code, exc.message)


def render(envelope: Dict[str, Any], pretty: bool = False) -> str:
    if pretty:
        return json.dumps(envelope, indent=2)
    return json.dumps(envelope, separators=(",", ":"))
