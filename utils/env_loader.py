import os
from pathlib import Path
from typing import Optional


def _parse_line(raw_line: str):
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export ") :].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        value = value[1:-1]
    return key, value


def load_environments(env_path: str = ".env") -> None:
    env_file = Path(env_path)
    if not env_file.is_file():
        return

    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        parsed = _parse_line(raw_line)
        if parsed is None:
            continue
        key, value = parsed
        if key and key not in os.environ:
            os.environ[key] = value


def read_secret(var_name: Optional[str]) -> Optional[str]:
    """Look up a password kept in an environment variable, loading .env first."""
    if not var_name:
        return None
    load_environments()
    value = os.getenv(var_name)
    if value is None or value == "":
        return None
    return value
