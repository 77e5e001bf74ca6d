"""
Database layer: models, sessions and repositories.
"""
from src.codeleads.db.base import Base
from src.codeleads.db.session import get_session_factory, session_scope

__all__ = ["Base", "get_session_factory", "session_scope"]
