"""Database layer - engine, declarative base and column types."""

from access_kernel.db.base import Base, JSONText, UTCDateTime, UUIDString
from access_kernel.db.engine import (
    commit_with_effects,
    create_tables,
    defer_until_commit,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    run_post_commit,
    session_scope,
)

__all__ = [
    "Base",
    "JSONText",
    "UTCDateTime",
    "UUIDString",
    "commit_with_effects",
    "create_tables",
    "defer_until_commit",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "run_post_commit",
    "session_scope",
]
