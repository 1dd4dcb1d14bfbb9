"""Pydantic schemas for user records."""

import re
from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.core.security import BCRYPT_MAX_BYTES
from app.models.user import CPF_LENGTH, NAME_MAX_LENGTH

PASSWORD_MIN_LENGTH = 6
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 11

_CPF_SEPARATORS = re.compile(r"[.\-\s]")
_PHONE_SEPARATORS = re.compile(r"[()+.\-\s]")
_CPF_PATTERN = re.compile(rf"^\d{{{CPF_LENGTH}}}$")
_PHONE_PATTERN = re.compile(rf"^\d{{{PHONE_MIN_DIGITS},{PHONE_MAX_DIGITS}}}$")

# Fields a partial update may not explicitly set to null
_NON_NULLABLE_UPDATE_FIELDS = ("name", "email", "cpf", "phone", "birth_date")


# ==================== Helper Functions ====================


def normalize_cpf(value: str) -> str:
    """
    Strip CPF punctuation and require exactly 11 digits.

    ``123.456.789-01`` and ``12345678901`` both normalise to ``12345678901``.

    Raises:
        ValueError: If the remaining value is not 11 digits
    """
    digits = _CPF_SEPARATORS.sub("", value)
    if not _CPF_PATTERN.match(digits):
        msg = f"CPF must have exactly {CPF_LENGTH} digits"
        raise ValueError(msg)
    return digits


def normalize_phone(value: str) -> str:
    """
    Strip phone punctuation and require 10 or 11 digits.

    Raises:
        ValueError: If the remaining value is not 10-11 digits
    """
    digits = _PHONE_SEPARATORS.sub("", value)
    if not _PHONE_PATTERN.match(digits):
        msg = f"Phone must have {PHONE_MIN_DIGITS} to {PHONE_MAX_DIGITS} digits"
        raise ValueError(msg)
    return digits


def validate_birth_date(value: date) -> date:
    """Reject birth dates after today."""
    if value > date.today():
        msg = "Birth date cannot be in the future"
        raise ValueError(msg)
    return value


def validate_password_bytes(value: str) -> str:
    """Reject passwords bcrypt would silently truncate."""
    if len(value.encode()) > BCRYPT_MAX_BYTES:
        msg = f"Password must be at most {BCRYPT_MAX_BYTES} bytes"
        raise ValueError(msg)
    return value


# ==================== Request Schemas ====================


class UserCreate(BaseModel):
    """Request to create a user. Every field is required."""

    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)
    cpf: str
    phone: str
    birth_date: date

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:  # noqa: ANN401
        """Trim surrounding whitespace so blank names fail min_length."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, v: str) -> str:
        """Normalize email to lowercase for case-insensitive uniqueness."""
        return v.lower()

    @field_validator("password", mode="after")
    @classmethod
    def check_password(cls, v: str) -> str:
        """Enforce the bcrypt input limit."""
        return validate_password_bytes(v)

    @field_validator("cpf", mode="after")
    @classmethod
    def check_cpf(cls, v: str) -> str:
        """Validate CPF using shared helper."""
        return normalize_cpf(v)

    @field_validator("phone", mode="after")
    @classmethod
    def check_phone(cls, v: str) -> str:
        """Validate phone using shared helper."""
        return normalize_phone(v)

    @field_validator("birth_date", mode="after")
    @classmethod
    def check_birth_date(cls, v: date) -> date:
        """Validate birth date using shared helper."""
        return validate_birth_date(v)


class UserUpdate(BaseModel):
    """
    Partial update of a user.

    Only the fields listed here can change. A field left out of the payload
    keeps its stored value. ``password`` may be omitted, null or empty to
    keep the current hash.
    """

    name: str | None = Field(None, min_length=1, max_length=NAME_MAX_LENGTH)
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=PASSWORD_MIN_LENGTH)
    cpf: str | None = None
    phone: str | None = None
    birth_date: date | None = None

    @field_validator(*_NON_NULLABLE_UPDATE_FIELDS, mode="before")
    @classmethod
    def reject_null(cls, v: Any) -> Any:  # noqa: ANN401
        """Supplied fields must carry a value."""
        if v is None:
            msg = "This field may not be null"
            raise ValueError(msg)
        return v.strip() if isinstance(v, str) else v

    @field_validator("password", mode="before")
    @classmethod
    def blank_password_means_unchanged(cls, v: Any) -> Any:  # noqa: ANN401
        """Treat an empty password as not supplied."""
        return None if v == "" else v

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, v: str) -> str:
        """Normalize email to lowercase for case-insensitive uniqueness."""
        return v.lower()

    @field_validator("password", mode="after")
    @classmethod
    def check_password(cls, v: str | None) -> str | None:
        """Enforce the bcrypt input limit."""
        return None if v is None else validate_password_bytes(v)

    @field_validator("cpf", mode="after")
    @classmethod
    def check_cpf(cls, v: str) -> str:
        """Validate CPF using shared helper."""
        return normalize_cpf(v)

    @field_validator("phone", mode="after")
    @classmethod
    def check_phone(cls, v: str) -> str:
        """Validate phone using shared helper."""
        return normalize_phone(v)

    @field_validator("birth_date", mode="after")
    @classmethod
    def check_birth_date(cls, v: date) -> date:
        """Validate birth date using shared helper."""
        return validate_birth_date(v)

    def column_changes(self) -> dict[str, Any]:
        """
        Return the columns to write, excluding the password.

        Returns:
            Mapping of column name to new value for every supplied field
        """
        return {
            field: value
            for field, value in self.model_dump(exclude_unset=True).items()
            if field != "password"
        }


# ==================== Response Schemas ====================


class UserResponse(BaseModel):
    """A user as returned by the API. Never includes the password."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    cpf: str
    phone: str
    birth_date: date
    created_at: datetime
    updated_at: datetime


class PaginationMeta(BaseModel):
    """Pagination metadata for a page of users.

    ``from`` and ``to`` are 1-based inclusive bounds of the rows on the page,
    both 0 when the page is empty.
    """

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., ge=0, description="Number of users matching the query")
    per_page: int = Field(..., ge=1, description="Page size")
    current_page: int = Field(..., ge=1, description="Requested page number")
    last_page: int = Field(..., ge=0, description="ceil(total / per_page)")
    from_: int = Field(..., alias="from", ge=0, description="Position of the first row on the page")
    to: int = Field(..., ge=0, description="Position of the last row on the page")


class UserListResponse(BaseModel):
    """Response for list and search."""

    success: bool = True
    data: list[UserResponse]
    pagination: PaginationMeta


class UserEnvelope(BaseModel):
    """Response wrapping a single user."""

    success: bool = True
    data: UserResponse
    message: str | None = None


class MessageResponse(BaseModel):
    """Response carrying only a message."""

    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Error envelope.

    ``message`` is a field-to-messages mapping for validation failures and a
    plain string otherwise.
    """

    success: bool = False
    message: str | dict[str, list[str]]
