"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobengine.db.connection import (
    close_db,
    get_engine,
    get_session_context,
    init_db,
    ping_db,
)
from jobengine.db.models import Base, Job

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "ping_db",
    "close_db",
    "Job",
    "Base",
]
