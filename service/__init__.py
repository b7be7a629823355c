from service.commands import build_operation, connect_command, introspect_command, query_command, resolve_descriptor

__all__ = ["build_operation", "connect_command", "introspect_command", "query_command", "resolve_descriptor"]
