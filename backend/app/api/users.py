"""User records API endpoints."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import NotFoundError
from app.schemas.users import (
    ErrorResponse,
    MessageResponse,
    UserCreate,
    UserEnvelope,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from app.services.user_service import UserService

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={
        422: {"model": ErrorResponse, "description": "Validation failed"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
)
logger = structlog.get_logger(__name__)


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    """Build a UserService bound to the request's session."""
    return UserService(db)


# ==================== API Endpoints ====================


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="1-based page number"),
    search: str | None = Query(None, max_length=255, description="Filter by name, email or CPF"),
    per_page: int = Query(settings.USERS_PER_PAGE, ge=1, le=settings.USERS_MAX_PER_PAGE),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    """
    List users newest first, optionally filtered by a search term.

    Args:
        page: Page number
        search: Case-insensitive substring matched against name, email and CPF
        per_page: Page size
        service: User service

    Returns:
        Page of users with pagination metadata
    """
    if search:
        users, pagination = await service.search_users(search, page, per_page)
    else:
        users, pagination = await service.list_users(page, per_page)

    return UserListResponse(
        data=[UserResponse.model_validate(user) for user in users],
        pagination=pagination,
    )


@router.get("/{user_id}", response_model=UserEnvelope, responses={404: {"model": ErrorResponse}})
async def get_user(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """
    Get a single user.

    Raises:
        NotFoundError: 404 if the user does not exist
    """
    if (user := await service.get_user_by_id(user_id)) is None:
        raise NotFoundError(user_id)
    return UserEnvelope(data=UserResponse.model_validate(user))


@router.post(
    "",
    response_model=UserEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_user(
    request: UserCreate,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """
    Create a user.

    Args:
        request: User fields (all required)
        service: User service

    Returns:
        Created user (without password)

    Raises:
        ConflictError: 409 if the email or CPF is already registered
    """
    user = await service.create_user(request)
    return UserEnvelope(data=UserResponse.model_validate(user), message="User created successfully.")


@router.put(
    "/{user_id}",
    response_model=UserEnvelope,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_user(
    user_id: UUID,
    request: UserUpdate,
    service: UserService = Depends(get_user_service),
) -> UserEnvelope:
    """
    Update any subset of a user's fields.

    An omitted or empty password keeps the current one.

    Raises:
        NotFoundError: 404 if the user does not exist
        ConflictError: 409 if the new email or CPF belongs to another user
    """
    user = await service.update_user(user_id, request)
    return UserEnvelope(data=UserResponse.model_validate(user), message="User updated successfully.")


@router.delete("/{user_id}", response_model=MessageResponse, responses={404: {"model": ErrorResponse}})
async def delete_user(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    """
    Delete a user permanently.

    Raises:
        NotFoundError: 404 if no row was deleted
    """
    if not await service.delete_user(user_id):
        logger.info("user_delete_missing", user_id=str(user_id))
        raise NotFoundError(user_id)
    return MessageResponse(message="User deleted successfully.")
