"""FastAPI dependencies for database access, internal auth and messaging."""

from typing import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.message_sender import MessageSender, WebhookMessageSender


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


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header (cron jobs and automation admin)."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_message_sender() -> MessageSender:
    return WebhookMessageSender()
