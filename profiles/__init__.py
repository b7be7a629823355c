"""Named connection profiles kept in local and global JSON registries."""

from profiles.store import list_connections, merge_overrides, resolve_connection, save_connection

__all__ = ["list_connections", "merge_overrides", "resolve_connection", "save_connection"]
