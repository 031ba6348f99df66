# leadrelay/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from leadrelay.db.base import Base
from leadrelay.db.session import get_sessionmaker, session_scope

__all__ = [
    "Base",
    "get_sessionmaker",
    "session_scope",
]
