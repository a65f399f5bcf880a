"""FastAPI dependencies."""

from typing import Generator
from uuid import UUID

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a session on the tenant store and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: str | None = Header(None)) -> UUID | None:
    """Acting user id forwarded by the authenticating gateway."""
    if not x_actor_id:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Actor-Id header")


def require_actor_id(x_actor_id: str | None = Header(None)) -> UUID:
    actor_id = get_actor_id(x_actor_id)
    if actor_id is None:
        raise HTTPException(status_code=400, detail="X-Actor-Id header is required")
    return actor_id


def get_execution_context() -> ExecutionContext:
    """Collaborators handed to action handlers run from the API."""
    return ExecutionContext.default()
