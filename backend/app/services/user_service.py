"""User record service: list, search, create, update and delete users."""

import asyncio
import math
import uuid

import structlog
from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, StorageError
from app.core.security import hash_password
from app.core.telemetry import service_span
from app.models.base import utcnow
from app.models.user import User
from app.schemas.users import PaginationMeta, UserCreate, UserUpdate

logger = structlog.get_logger(__name__)

# Columns that must be unique, in the order conflicts are reported
UNIQUE_FIELDS = ("email", "cpf")

# ==================== Pure Calculation Functions ====================


def calculate_pagination(total: int, page: int, per_page: int) -> PaginationMeta:
    """
    Build pagination metadata for a page of results.

    Pure function with no side effects - can be unit tested independently.

    Args:
        total: Number of rows matching the query
        page: 1-based page number that was requested
        per_page: Page size

    Returns:
        PaginationMeta where ``last_page`` is ``ceil(total / per_page)`` and
        ``from``/``to`` are 1-based inclusive bounds (0 for an empty page)

    Example:
        >>> calculate_pagination(12, 1, 5).model_dump(by_alias=True)
        {'total': 12, 'per_page': 5, 'current_page': 1, 'last_page': 3, 'from': 1, 'to': 5}
    """
    offset = (page - 1) * per_page
    has_rows = offset < total
    return PaginationMeta(
        total=total,
        per_page=per_page,
        current_page=page,
        last_page=math.ceil(total / per_page),
        from_=offset + 1 if has_rows else 0,
        to=min(offset + per_page, total) if has_rows else 0,
    )


def search_filter(term: str) -> ColumnElement[bool]:
    """
    Case-insensitive substring match on name, email or CPF.

    ``%`` and ``_`` in the term match literally.
    """
    return or_(
        User.name.icontains(term, autoescape=True),
        User.email.icontains(term, autoescape=True),
        User.cpf.icontains(term, autoescape=True),
    )


class UserService:
    """Service for user record operations."""

    def __init__(self, db: AsyncSession) -> None:
        """
        Initialize the user service.

        Args:
            db: Database session scoped to the current request
        """
        self.db = db

    # ==================== Reads ====================

    async def list_users(
        self,
        page: int = 1,
        per_page: int | None = None,
    ) -> tuple[list[User], PaginationMeta]:
        """
        Get a page of users, newest first.

        Args:
            page: 1-based page number
            per_page: Page size (defaults to USERS_PER_PAGE)

        Returns:
            Tuple of (users on the page, pagination metadata)

        Raises:
            StorageError: If the database query fails
        """
        with service_span("users.list", "user-service") as span:
            span.set_attribute("users.page", page)
            return await self._paginate(select(User), page, per_page or settings.USERS_PER_PAGE, "list_users")

    async def search_users(
        self,
        term: str,
        page: int = 1,
        per_page: int | None = None,
    ) -> tuple[list[User], PaginationMeta]:
        """
        Get a page of users whose name, email or CPF contains ``term``.

        The filtered set is counted on its own, so ``pagination.total`` is the
        number of matches. A blank term lists every user.

        Args:
            term: Search text (case-insensitive substring)
            page: 1-based page number
            per_page: Page size (defaults to USERS_PER_PAGE)

        Returns:
            Tuple of (matching users on the page, pagination metadata)

        Raises:
            StorageError: If the database query fails
        """
        if not (term := term.strip()):
            return await self.list_users(page, per_page)

        with service_span("users.search", "user-service") as span:
            span.set_attribute("users.page", page)
            span.set_attribute("users.search_length", len(term))
            query = select(User).where(search_filter(term))
            return await self._paginate(query, page, per_page or settings.USERS_PER_PAGE, "search_users")

    async def get_user_by_id(self, user_id: uuid.UUID) -> User | None:
        """
        Look up a single user.

        Args:
            user_id: User UUID

        Returns:
            The user, or None if no user has this id

        Raises:
            StorageError: If the database query fails
        """
        try:
            result = await self.db.execute(select(User).where(User.id == user_id))
        except SQLAlchemyError as e:
            raise StorageError("get_user_by_id") from e
        return result.scalar_one_or_none()

    async def _paginate(
        self,
        query: Select[tuple[User]],
        page: int,
        per_page: int,
        operation: str,
    ) -> tuple[list[User], PaginationMeta]:
        # Count and page queries share the same WHERE clause
        count_query = select(func.count()).select_from(query.subquery())
        offset = (page - 1) * per_page
        try:
            total = (await self.db.execute(count_query)).scalar_one()
            users: list[User] = []
            # Pages past the end are empty; their offset may not fit a database integer
            if offset < total:
                page_query = query.order_by(User.created_at.desc(), User.id.desc()).limit(per_page).offset(offset)
                users = list((await self.db.execute(page_query)).scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(operation) from e

        return users, calculate_pagination(total, page, per_page)

    # ==================== Writes ====================

    async def create_user(self, data: UserCreate) -> User:
        """
        Create a user, storing a bcrypt hash of the password.

        Args:
            data: Validated user fields

        Returns:
            The persisted user

        Raises:
            ConflictError: If the email or CPF is already registered
            StorageError: If the database write fails
        """
        with service_span("users.create", "user-service"):
            # bcrypt is CPU bound, run it off the event loop
            loop = asyncio.get_running_loop()
            password_hash = await loop.run_in_executor(None, hash_password, data.password)
            user = User(
                name=data.name,
                email=data.email,
                password=password_hash,
                cpf=data.cpf,
                phone=data.phone,
                birth_date=data.birth_date,
            )
            self.db.add(user)
            await self._commit("create_user", email=data.email, cpf=data.cpf)
            await self.db.refresh(user)

            logger.info("user_created", user_id=str(user.id))
            return user

    async def update_user(self, user_id: uuid.UUID, data: UserUpdate) -> User:
        """
        Apply a partial update and return the refreshed user.

        Only fields present in ``data`` are written. The password is re-hashed
        only when a non-empty one was supplied. ``updated_at`` is always set.

        Args:
            user_id: User UUID
            data: Validated partial update

        Returns:
            The user as stored after the update

        Raises:
            NotFoundError: If no user has this id
            ConflictError: If the new email or CPF belongs to another user
            StorageError: If the database write fails
        """
        with service_span("users.update", "user-service") as span:
            values = data.column_changes()
            if data.password:
                loop = asyncio.get_running_loop()
                values["password"] = await loop.run_in_executor(None, hash_password, data.password)
            values["updated_at"] = utcnow()
            span.set_attribute("users.updated_fields", sorted(values))

            statement = update(User).where(User.id == user_id).values(**values)
            try:
                result = await self.db.execute(statement)
            except IntegrityError:
                await self.db.rollback()
                raise await self._conflict_for(values, exclude_id=user_id) from None
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageError("update_user") from e

            if result.rowcount == 0:
                await self.db.rollback()
                raise NotFoundError(user_id)

            await self._commit("update_user", exclude_id=user_id, **values)

            # Bulk UPDATE bypasses the identity map, reload the row
            user = await self.db.get(User, user_id, populate_existing=True)
            if user is None:
                raise NotFoundError(user_id)

            logger.info("user_updated", user_id=str(user_id), fields=sorted(data.model_fields_set))
            return user

    async def delete_user(self, user_id: uuid.UUID) -> bool:
        """
        Hard-delete a user.

        Args:
            user_id: User UUID

        Returns:
            True if a row was deleted, False if no user had this id

        Raises:
            StorageError: If the database write fails
        """
        with service_span("users.delete", "user-service"):
            try:
                result = await self.db.execute(delete(User).where(User.id == user_id))
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageError("delete_user") from e

            deleted = result.rowcount > 0
            if deleted:
                logger.info("user_deleted", user_id=str(user_id))
            return deleted

    # ==================== Helpers ====================

    async def _commit(self, operation: str, exclude_id: uuid.UUID | None = None, **values: object) -> None:
        """Commit, turning unique index violations into ConflictError."""
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise await self._conflict_for(values, exclude_id=exclude_id) from None
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(operation) from e

    async def _conflict_for(self, values: dict[str, object], exclude_id: uuid.UUID | None = None) -> ConflictError:
        """
        Work out which unique field caused an IntegrityError.

        The unique indexes are the authority; this lookup only chooses the
        message after the database has already refused the write.
        """
        for field in UNIQUE_FIELDS:
            if (value := values.get(field)) is None:
                continue
            query = select(User.id).where(getattr(User, field) == value)
            if exclude_id is not None:
                query = query.where(User.id != exclude_id)
            try:
                taken = (await self.db.execute(query.limit(1))).scalar_one_or_none()
            except SQLAlchemyError:
                logger.exception("user_conflict_lookup_failed", field=field)
                break
            if taken is not None:
                logger.info("user_conflict", field=field)
                return ConflictError(field)

        logger.info("user_conflict", field=None)
        return ConflictError()
