"""User record model."""

from datetime import date

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel

NAME_MAX_LENGTH = 255
EMAIL_MAX_LENGTH = 255
CPF_LENGTH = 11
PHONE_MAX_LENGTH = 11


class User(BaseModel):
    """A managed user record.

    ``password`` holds a bcrypt hash and is never serialised by the
    response schemas.
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    email: Mapped[str] = mapped_column(String(EMAIL_MAX_LENGTH), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[str] = mapped_column(String(CPF_LENGTH), nullable=False)
    phone: Mapped[str] = mapped_column(String(PHONE_MAX_LENGTH), nullable=False)
    birth_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
        Index("ix_users_cpf", "cpf", unique=True),
        Index("ix_users_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation without PII."""
        return f"<User(id={self.id})>"
