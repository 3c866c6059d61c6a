"""User model."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String

from app.database import Base


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class User(Base):
    """User account."""
    
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(254), unique=True, nullable=False, index=True)  # Stored lower-cased
    name = Column(String(100))
    password_hash = Column(String(255), nullable=False)
    created_at = Column(String(32), default=utc_now_iso)
    updated_at = Column(String(32), default=utc_now_iso, onupdate=utc_now_iso)
