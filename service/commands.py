import logging
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from adapters import factory
from adapters.errors import AdapterError, ConfigurationError, InvalidInput
from adapters.models import Capabilities, ConnectionDescriptor, TableFields, parse_operation
from profiles.store import DESCRIPTOR_FIELDS, merge_overrides, resolve_connection, save_connection
from utils.env_loader import read_secret
from utils.envelope import from_error, success

logger = logging.getLogger(__name__)


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}" for err in exc.errors())


def _explicit_fields(fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    fields = fields or {}
    explicit = {key: fields[key] for key in DESCRIPTOR_FIELDS if fields.get(key) not in (None, "")}
    password_env = fields.get("password_env")
    if "password" not in explicit and password_env:
        password = read_secret(password_env)
        if password is None:
            raise ConfigurationError(f"Environment variable {password_env} not found for password")
        explicit["password"] = password
    return explicit


def resolve_descriptor(fields: Optional[Dict[str, Any]], name: Optional[str] = None) -> ConnectionDescriptor:
    """Explicit engine without a profile name builds the descriptor directly;
    otherwise the named (or current) profile is loaded and explicit fields win."""
    explicit = _explicit_fields(fields)
    if explicit.get("engine") and not name:
        try:
            return ConnectionDescriptor(**explicit)
        except ValidationError as exc:
            raise InvalidInput(_validation_message(exc)) from None
    return merge_overrides(resolve_connection(name), explicit)


def build_operation(op: str, target: Optional[str] = None, fields: Any = None):
    """Turn surface arguments (CLI flags, tool arguments, request bodies) into an operation model."""
    key = str(op or "").strip().lower().replace("-", "_")
    payload: Dict[str, Any] = {"op": key}
    if key == "list_indexes":
        payload["table"] = target or None
    elif key in {"table_details", "view_details"}:
        if not target:
            raise InvalidInput(f"{key} requires a table or view name")
        payload["name"] = target
        if key == "table_details" and fields:
            raw = ",".join(fields) if isinstance(fields, (list, tuple)) else str(fields)
            try:
                payload["fields"] = TableFields.parse(raw)
            except ValueError as exc:
                raise InvalidInput(str(exc)) from None
    try:
        return parse_operation(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Unknown introspection operation {op!r}: {_validation_message(exc)}") from None


def _engine_hint(fields: Optional[Dict[str, Any]]) -> str:
    return str((fields or {}).get("engine") or "")


async def connect_command(
    fields: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    save: bool = False,
    make_current: bool = False,
    location: str = "local",
) -> Dict[str, Any]:
    engine = _engine_hint(fields)
    started = time.perf_counter()
    try:
        if save and not name:
            raise ConfigurationError("A connection name is required to save a connection")
        # A name being saved is new, so it is not looked up in the registries.
        descriptor = resolve_descriptor(fields, None if save else name)
        engine = descriptor.engine.value
        info = await factory.validate_connection(descriptor)
        data: Dict[str, Any] = {"connection_info": info.model_dump(mode="json")}
        if save:
            path = save_connection(
                name,
                descriptor,
                location=location,
                make_current=make_current,
                password_env=(fields or {}).get("password_env"),
            )
            data["saved"] = {"name": name, "location": location, "path": str(path)}
        return success(engine, "connect", data, (time.perf_counter() - started) * 1000.0)
    except AdapterError as exc:
        logger.info("connect failed: %s", exc.code)
        return from_error(engine, "connect", exc)


async def introspect_command(
    operation: Any,
    fields: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
    target: Optional[str] = None,
    table_fields: Any = None,
) -> Dict[str, Any]:
    engine = _engine_hint(fields)
    started = time.perf_counter()
    try:
        if isinstance(operation, str):
            operation = build_operation(operation, target, table_fields)
        descriptor = resolve_descriptor(fields, name)
        engine = descriptor.engine.value
        result = await factory.introspect(descriptor, operation, database, schema)
        return success(engine, "introspect", result, (time.perf_counter() - started) * 1000.0)
    except AdapterError as exc:
        logger.info("introspect failed: %s", exc.code)
        return from_error(engine, "introspect", exc)


async def query_command(
    sql: str,
    fields: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    max_rows: Optional[int] = None,
    timeout_ms: Optional[int] = None,
) -> Dict[str, Any]:
    engine = _engine_hint(fields)
    try:
        try:
            capabilities = Capabilities(max_rows=max_rows, timeout_ms=timeout_ms)
        except ValidationError as exc:
            raise InvalidInput(_validation_message(exc)) from None
        descriptor = resolve_descriptor(fields, name)
        engine = descriptor.engine.value
        result = await factory.execute(descriptor, sql, capabilities)
        return success(engine, "query", result, result.execution_ms, rows_returned=len(result.rows))
    except AdapterError as exc:
        logger.info("query failed: %s", exc.code)
        return from_error(engine, "query", exc)
