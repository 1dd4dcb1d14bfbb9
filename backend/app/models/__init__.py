"""Database models for the user records application."""

# Importing every model registers it with Base.metadata
from app.models.base import Base, BaseModel
from app.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "User",
]
