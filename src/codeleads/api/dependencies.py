"""
FastAPI Dependencies

Provides dependency injection for database sessions, the service facade
and the caller identity.
"""
from typing import Generator

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from src.codeleads.db.session import get_session_factory
from src.codeleads.services import CodeLeadsServices, get_services as _get_services


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields:
        SQLAlchemy database session
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_services() -> CodeLeadsServices:
    return _get_services()


def get_current_user(x_user_id: str = Header(None, alias="X-User-Id")) -> str:
    """
    Caller identity.

    Authentication happens upstream; the gateway forwards the opaque user
    id in the X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id.strip()
