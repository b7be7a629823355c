import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from adapters.errors import ConfigurationError
from adapters.models import ConnectionDescriptor
from utils.env_loader import read_secret
from utils.settings import get_settings

logger = logging.getLogger(__name__)

LOCAL_DIR_NAME = ".querygate"
LOCAL_FILE_NAME = "config.json"
GLOBAL_FILE_NAME = "connections.json"
LOCATIONS = ("local", "global")

DESCRIPTOR_FIELDS = ("engine", "host", "port", "user", "password", "database", "file")


def local_config_path() -> Path:
    return Path.cwd() / LOCAL_DIR_NAME / LOCAL_FILE_NAME


def global_config_path() -> Path:
    settings = get_settings()
    if settings.config_home is not None:
        return settings.config_home / GLOBAL_FILE_NAME
    xdg_home = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg_home).expanduser() if xdg_home else Path.home() / ".config"
    return base / "querygate" / GLOBAL_FILE_NAME


def config_path(location: str) -> Path:
    if location == "local":
        return local_config_path()
    if location == "global":
        return global_config_path()
    raise ConfigurationError(f"Unknown config location: {location!r}. Must be local or global")


def _empty_registry() -> Dict[str, Any]:
    return {"connections": {}, "current": None}


def load_registry(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return _empty_registry()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Could not read config file {path}: {exc.strerror or exc}") from None
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid config file format in {path}: {exc.msg} (line {exc.lineno})") from None
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Invalid config file format in {path}: expected a JSON object")

    connections = payload.get("connections") or {}
    if not isinstance(connections, dict):
        raise ConfigurationError(f"Invalid config file format in {path}: 'connections' must be an object")
    # "default" is the older spelling of "current".
    current = payload.get("current", payload.get("default"))
    return {"connections": dict(connections), "current": current}


def save_registry(path: Path, registry: Dict[str, Any]) -> None:
    payload: Dict[str, Any] = {"connections": registry.get("connections") or {}}
    if registry.get("current"):
        payload["current"] = registry["current"]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Could not write config file {path}: {exc.strerror or exc}") from None


def load_with_precedence() -> Dict[str, Any]:
    """Merged view of both registries; local entries shadow global ones of the same name."""
    global_registry = load_registry(global_config_path())
    local_registry = load_registry(local_config_path())
    merged = _empty_registry()
    merged["connections"].update(global_registry["connections"])
    merged["connections"].update(local_registry["connections"])
    merged["current"] = local_registry["current"] or global_registry["current"]
    return merged


def load_local_or_global() -> Dict[str, Any]:
    local_path = local_config_path()
    if local_path.exists():
        return load_registry(local_path)
    return load_registry(global_config_path())


def resolve_stored(name: str, entry: Dict[str, Any]) -> ConnectionDescriptor:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Connection '{name}' is not a JSON object")
    fields = {key: entry.get(key) for key in DESCRIPTOR_FIELDS if entry.get(key) is not None}
    password_env = entry.get("password_env")
    if password_env:
        password = read_secret(password_env)
        if password is None:
            raise ConfigurationError(f"Environment variable {password_env} not found for password")
        fields["password"] = password
    try:
        return ConnectionDescriptor(**fields)
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise ConfigurationError(f"Connection '{name}' is invalid: {problems}") from None


def resolve_connection(name: Optional[str] = None) -> ConnectionDescriptor:
    if name:
        registry = load_with_precedence()
        connection_name = name
    else:
        registry = load_local_or_global()
        connection_name = registry.get("current")
        if not connection_name:
            raise ConfigurationError("No connection name specified and no current connection set")

    entry = registry["connections"].get(connection_name)
    if entry is None:
        raise ConfigurationError(f"Connection '{connection_name}' not found")
    return resolve_stored(connection_name, entry)


def save_connection(
    name: str,
    descriptor: ConnectionDescriptor,
    location: str = "local",
    make_current: bool = False,
    password_env: Optional[str] = None,
) -> Path:
    if not name or not name.strip():
        raise ConfigurationError("Connection name cannot be empty")
    path = config_path(location)
    registry = load_registry(path)

    entry = descriptor.to_stored_fields()
    if password_env:
        entry.pop("password", None)
        entry["password_env"] = password_env
    registry["connections"][name] = entry

    # The first saved connection becomes current.
    if make_current or not registry.get("current"):
        registry["current"] = name

    save_registry(path, registry)
    logger.info("Saved connection %s to %s registry", name, location, extra={"target": descriptor.describe()})
    return path


def list_connections() -> List[Tuple[str, ConnectionDescriptor]]:
    registry = load_with_precedence()
    resolved: List[Tuple[str, ConnectionDescriptor]] = []
    for name in sorted(registry["connections"]):
        try:
            resolved.append((name, resolve_stored(name, registry["connections"][name])))
        except ConfigurationError as exc:
            logger.warning("Could not resolve connection '%s': %s", name, exc.message)
    return resolved


def current_connection_name() -> Optional[str]:
    return load_with_precedence().get("current")


def merge_overrides(descriptor: ConnectionDescriptor, overrides: Dict[str, Any]) -> ConnectionDescriptor:
    updates = {key: value for key, value in overrides.items() if key in DESCRIPTOR_FIELDS and value is not None}
    if not updates:
        return descriptor
    data = descriptor.model_dump(exclude={"password"})
    if descriptor.password is not None:
        data["password"] = descriptor.secret()
    data.update(updates)
    try:
        return ConnectionDescriptor(**data)
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise ConfigurationError(f"Invalid connection override: {problems}") from None
