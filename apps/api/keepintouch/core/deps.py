"""FastAPI dependencies for database access and collaborators."""

from typing import Generator

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from keepintouch.db.session import SessionLocal
from keepintouch.services.collaborators import KitCollaborators, default_collaborators

# Header carrying the acting user's identifier (set by the calling application)
ACTOR_HEADER = "X-Actor"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_collaborators(db: Session = Depends(get_db)) -> KitCollaborators:
    """Collaborators for the request; override in the host application to plug in gateways."""
    return default_collaborators(db)


def get_actor(x_actor: str | None = Header(None, alias=ACTOR_HEADER)) -> str:
    """Acting user from the X-Actor header ("anonymous" when missing)."""
    return (x_actor or "").strip() or "anonymous"
