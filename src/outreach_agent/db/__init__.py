"""Database layer: models, sessions and repositories."""

from outreach_agent.db.base import Base, UUIDType, UTCDateTime, ensure_utc, utc_now
from outreach_agent.db.session import (
    get_engine,
    get_session_factory,
    create_session_factory,
    get_db,
    get_db_context,
    init_db,
    close_db,
)

__all__ = [
    "Base",
    "UUIDType",
    "UTCDateTime",
    "ensure_utc",
    "utc_now",
    "get_engine",
    "get_session_factory",
    "create_session_factory",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
]
