"""Engine adapters for read-only execution and catalog introspection."""

from adapters.factory import execute, get_adapter, introspect, validate_connection

__all__ = ["execute", "get_adapter", "introspect", "validate_connection"]
