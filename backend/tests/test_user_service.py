"""Tests for UserService."""

import asyncio
import threading
import uuid
from collections.abc import Callable
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from app.core.exceptions import ConflictError, NotFoundError, StorageError
from app.core.security import hash_password, verify_password
from app.models.user import User
from app.schemas.users import UserCreate, UserUpdate
from app.services.user_service import UserService, calculate_pagination
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.test_data import user_payload
from tests.helpers.types import UserFactory


def hash_after(released: threading.Event, waited: list[bool]) -> Callable[[str], str]:
    """
    Build a hash function that first waits for ``released``.

    ``released`` is set by a coroutine, so the wait only succeeds when hashing
    runs off the event loop. The outcome of each wait is appended to ``waited``.
    """

    def hash_when_released(plain: str) -> str:
        waited.append(released.wait(timeout=2))
        return hash_password(plain)

    return hash_when_released


async def release_soon(released: threading.Event) -> None:
    """Set ``released`` from the event loop after a short sleep."""
    await asyncio.sleep(0.01)
    released.set()


@pytest.fixture
def user_service(db_session: AsyncSession) -> UserService:
    """Create UserService instance with test database session."""
    return UserService(db_session)


# ==================== calculate_pagination ====================


class TestCalculatePagination:
    """Tests for the pure pagination calculation."""

    def test_first_page(self) -> None:
        """First page of 12 rows at 5 per page covers rows 1-5 of 3 pages."""
        meta = calculate_pagination(12, 1, 5)
        assert (meta.total, meta.per_page, meta.current_page, meta.last_page) == (12, 5, 1, 3)
        assert (meta.from_, meta.to) == (1, 5)

    def test_partial_last_page(self) -> None:
        """Last page holds the remainder."""
        meta = calculate_pagination(12, 3, 5)
        assert (meta.from_, meta.to) == (11, 12)

    def test_exact_multiple(self) -> None:
        """Total divisible by page size does not add an empty page."""
        assert calculate_pagination(10, 1, 5).last_page == 2

    def test_empty_result(self) -> None:
        """No rows means zero pages and zero bounds."""
        meta = calculate_pagination(0, 1, 5)
        assert meta.last_page == 0
        assert (meta.from_, meta.to) == (0, 0)

    def test_page_past_the_end(self) -> None:
        """A page beyond the last one is empty but keeps the total."""
        meta = calculate_pagination(12, 4, 5)
        assert meta.total == 12
        assert meta.last_page == 3
        assert (meta.from_, meta.to) == (0, 0)

    def test_serialises_from_alias(self) -> None:
        """The lower bound is exposed as ``from``."""
        assert calculate_pagination(12, 2, 5).model_dump(by_alias=True)["from"] == 6


# ==================== list_users ====================


class TestListUsers:
    """Tests for listing users."""

    @pytest.mark.asyncio
    async def test_empty_database(self, user_service: UserService) -> None:
        """Listing an empty table returns no rows and an empty page."""
        users, pagination = await user_service.list_users()

        assert users == []
        assert pagination.total == 0
        assert pagination.last_page == 0

    @pytest.mark.asyncio
    async def test_newest_first(self, user_service: UserService, make_user: UserFactory) -> None:
        """Users come back ordered by created_at descending."""
        first = await make_user()
        second = await make_user()
        third = await make_user()

        users, _ = await user_service.list_users()

        assert [u.id for u in users] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_paginates_twelve_users(self, user_service: UserService, make_user: UserFactory) -> None:
        """Twelve users at five per page: page 3 holds the two oldest."""
        created = [await make_user() for _ in range(12)]

        users, pagination = await user_service.list_users(page=3, per_page=5)

        assert [u.id for u in users] == [created[1].id, created[0].id]
        assert pagination.total == 12
        assert pagination.last_page == 3
        assert (pagination.from_, pagination.to) == (11, 12)

    @pytest.mark.asyncio
    async def test_default_page_size(self, user_service: UserService, make_user: UserFactory) -> None:
        """Without per_page the configured page size is used."""
        for _ in range(7):
            await make_user()

        users, pagination = await user_service.list_users()

        assert len(users) == 5
        assert pagination.per_page == 5

    @pytest.mark.asyncio
    async def test_page_past_the_end(self, user_service: UserService, make_user: UserFactory) -> None:
        """Requesting a page beyond the last returns no rows and the real total."""
        await make_user()

        users, pagination = await user_service.list_users(page=9)

        assert users == []
        assert pagination.total == 1

    @pytest.mark.asyncio
    async def test_page_beyond_integer_range(self, user_service: UserService, make_user: UserFactory) -> None:
        """A page whose offset overflows a database integer is still just empty."""
        await make_user()

        users, pagination = await user_service.list_users(page=10**19)

        assert users == []
        assert pagination.total == 1
        assert (pagination.from_, pagination.to) == (0, 0)

    @pytest.mark.asyncio
    async def test_search_page_beyond_integer_range(self, user_service: UserService, make_user: UserFactory) -> None:
        """Searching a huge page number returns no rows and the match count."""
        await make_user(name="Ana Silva")

        users, pagination = await user_service.search_users("silva", page=10**19)

        assert users == []
        assert pagination.total == 1

    @pytest.mark.asyncio
    async def test_database_failure_raises_storage_error(self, user_service: UserService) -> None:
        """Driver errors surface as StorageError with the cause attached."""
        with patch.object(
            user_service.db, "execute", AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        ):
            with pytest.raises(StorageError) as exc_info:
                await user_service.list_users()

        assert exc_info.value.operation == "list_users"
        assert isinstance(exc_info.value.__cause__, OperationalError)


# ==================== search_users ====================


class TestSearchUsers:
    """Tests for searching users."""

    @pytest.mark.asyncio
    async def test_matches_name_email_or_cpf(self, user_service: UserService, make_user: UserFactory) -> None:
        """The term is matched against name, email and CPF."""
        by_name = await make_user(name="Maria Souza")
        by_email = await make_user(email="souza.joao@example.com")
        by_cpf = await make_user(cpf="98765432100")
        await make_user(name="Pedro Lima")

        users, pagination = await user_service.search_users("souza")
        assert {u.id for u in users} == {by_name.id, by_email.id}
        assert pagination.total == 2

        users, _ = await user_service.search_users("654321")
        assert [u.id for u in users] == [by_cpf.id]

    @pytest.mark.asyncio
    async def test_case_insensitive(self, user_service: UserService, make_user: UserFactory) -> None:
        """Search ignores case."""
        user = await make_user(name="Ana Silva")

        users, _ = await user_service.search_users("ANA SIL")

        assert [u.id for u in users] == [user.id]

    @pytest.mark.asyncio
    async def test_total_counts_matches_only(self, user_service: UserService, make_user: UserFactory) -> None:
        """Pagination totals reflect the filtered set, not the whole table."""
        for i in range(7):
            await make_user(name=f"Silva {i}")
        for _ in range(5):
            await make_user(name="Costa")

        users, pagination = await user_service.search_users("silva", page=2, per_page=5)

        assert len(users) == 2
        assert pagination.total == 7
        assert pagination.last_page == 2
        assert (pagination.from_, pagination.to) == (6, 7)

    @pytest.mark.asyncio
    async def test_wildcards_match_literally(self, user_service: UserService, make_user: UserFactory) -> None:
        """``%`` and ``_`` in the term are not LIKE wildcards."""
        await make_user(name="Ana Silva")
        percent = await make_user(name="100% Real")

        assert (await user_service.search_users("%"))[0] == [percent]
        assert (await user_service.search_users("_"))[0] == []

    @pytest.mark.asyncio
    async def test_blank_term_lists_everyone(self, user_service: UserService, make_user: UserFactory) -> None:
        """A whitespace-only term behaves like no filter."""
        await make_user()
        await make_user()

        _, pagination = await user_service.search_users("   ")

        assert pagination.total == 2

    @pytest.mark.asyncio
    async def test_no_matches(self, user_service: UserService, make_user: UserFactory) -> None:
        """A term nobody matches yields an empty page."""
        await make_user()

        users, pagination = await user_service.search_users("zzz")

        assert users == []
        assert pagination.total == 0
        assert (pagination.from_, pagination.to) == (0, 0)


# ==================== get_user_by_id ====================


class TestGetUserById:
    """Tests for single-user lookup."""

    @pytest.mark.asyncio
    async def test_found(self, user_service: UserService, make_user: UserFactory) -> None:
        """An existing id returns the user."""
        user = await make_user()

        assert await user_service.get_user_by_id(user.id) == user

    @pytest.mark.asyncio
    async def test_missing(self, user_service: UserService) -> None:
        """An unknown id returns None."""
        assert await user_service.get_user_by_id(uuid.uuid4()) is None


# ==================== create_user ====================


class TestCreateUser:
    """Tests for creating users."""

    @pytest.mark.asyncio
    async def test_creates_with_hashed_password(self, user_service: UserService) -> None:
        """The stored password is a bcrypt hash of the plain one."""
        user = await user_service.create_user(UserCreate(**user_payload()))

        assert user.id is not None
        assert user.name == "Ana Silva"
        assert user.cpf == "12345678901"
        assert user.birth_date == date(1990, 1, 1)
        assert user.password != "secret1"
        assert user.password.startswith("$2b$")
        assert verify_password("secret1", user.password)
        assert user.created_at is not None
        assert user.updated_at is not None

    @pytest.mark.asyncio
    async def test_hashing_does_not_block_event_loop(self, user_service: UserService) -> None:
        """Other coroutines run while the password is hashed."""
        released = threading.Event()
        waited: list[bool] = []

        with patch("app.services.user_service.hash_password", side_effect=hash_after(released, waited)):
            user, _ = await asyncio.gather(
                user_service.create_user(UserCreate(**user_payload())),
                release_soon(released),
            )

        assert waited == [True]
        assert verify_password("secret1", user.password)

    @pytest.mark.asyncio
    async def test_duplicate_email(self, user_service: UserService, db_session: AsyncSession) -> None:
        """A second user with the same email is refused and nothing is stored."""
        await user_service.create_user(UserCreate(**user_payload()))

        with pytest.raises(ConflictError) as exc_info:
            await user_service.create_user(UserCreate(**user_payload(cpf="98765432100")))

        assert exc_info.value.field == "email"
        assert exc_info.value.message == "This email is already registered."
        count = len((await db_session.execute(select(User))).scalars().all())
        assert count == 1

    @pytest.mark.asyncio
    async def test_duplicate_email_ignores_case(self, user_service: UserService) -> None:
        """Emails are lowercased before the uniqueness check."""
        await user_service.create_user(UserCreate(**user_payload()))

        with pytest.raises(ConflictError) as exc_info:
            await user_service.create_user(UserCreate(**user_payload(email="ANA@Example.com", cpf="98765432100")))

        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_duplicate_cpf(self, user_service: UserService) -> None:
        """Punctuated and bare CPFs collide."""
        await user_service.create_user(UserCreate(**user_payload()))

        with pytest.raises(ConflictError) as exc_info:
            await user_service.create_user(UserCreate(**user_payload(email="other@example.com", cpf="123.456.789-01")))

        assert exc_info.value.field == "cpf"
        assert exc_info.value.message == "This CPF is already registered."

    @pytest.mark.asyncio
    async def test_session_usable_after_conflict(self, user_service: UserService) -> None:
        """The session is rolled back so the next write succeeds."""
        await user_service.create_user(UserCreate(**user_payload()))
        with pytest.raises(ConflictError):
            await user_service.create_user(UserCreate(**user_payload(cpf="98765432100")))

        user = await user_service.create_user(UserCreate(**user_payload(email="b@example.com", cpf="98765432100")))

        assert user.email == "b@example.com"

    @pytest.mark.asyncio
    async def test_commit_failure_raises_storage_error(self, user_service: UserService) -> None:
        """Non-constraint database errors become StorageError."""
        with patch.object(
            user_service.db, "commit", AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
        ):
            with pytest.raises(StorageError) as exc_info:
                await user_service.create_user(UserCreate(**user_payload()))

        assert exc_info.value.operation == "create_user"


# ==================== update_user ====================


class TestUpdateUser:
    """Tests for updating users."""

    @pytest.mark.asyncio
    async def test_updates_only_supplied_fields(self, user_service: UserService, make_user: UserFactory) -> None:
        """Fields left out of the update keep their values."""
        user = await make_user(name="Ana Silva", phone="11999999999")

        updated = await user_service.update_user(user.id, UserUpdate(name="Ana Souza"))

        assert updated.name == "Ana Souza"
        assert updated.phone == "11999999999"
        assert updated.email == user.email

    @pytest.mark.asyncio
    async def test_keeps_password_when_blank(self, user_service: UserService, make_user: UserFactory) -> None:
        """An empty password leaves the stored hash untouched."""
        user = await make_user()
        original_hash = user.password

        updated = await user_service.update_user(user.id, UserUpdate(password="", name="New Name"))

        assert updated.password == original_hash
        assert verify_password("secret1", updated.password)

    @pytest.mark.asyncio
    async def test_changes_password(self, user_service: UserService, make_user: UserFactory) -> None:
        """A new password is hashed and replaces the old one."""
        user = await make_user()

        updated = await user_service.update_user(user.id, UserUpdate(password="brandnew"))

        assert verify_password("brandnew", updated.password)
        assert not verify_password("secret1", updated.password)

    @pytest.mark.asyncio
    async def test_hashing_does_not_block_event_loop(self, user_service: UserService, make_user: UserFactory) -> None:
        """Other coroutines run while the new password is hashed."""
        user = await make_user()
        released = threading.Event()
        waited: list[bool] = []

        with patch("app.services.user_service.hash_password", side_effect=hash_after(released, waited)):
            updated, _ = await asyncio.gather(
                user_service.update_user(user.id, UserUpdate(password="brandnew")),
                release_soon(released),
            )

        assert waited == [True]
        assert verify_password("brandnew", updated.password)

    @pytest.mark.asyncio
    async def test_advances_updated_at(self, user_service: UserService, make_user: UserFactory) -> None:
        """updated_at moves forward and created_at stays put."""
        user = await make_user()
        created_at, updated_at = user.created_at, user.updated_at

        updated = await user_service.update_user(user.id, UserUpdate(phone="1133334444"))

        assert updated.created_at == created_at
        assert updated.updated_at > updated_at

    @pytest.mark.asyncio
    async def test_missing_user(self, user_service: UserService) -> None:
        """Updating an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await user_service.update_user(uuid.uuid4(), UserUpdate(name="Nobody"))

    @pytest.mark.asyncio
    async def test_email_taken_by_other_user(self, user_service: UserService, make_user: UserFactory) -> None:
        """Moving to another user's email is a conflict and changes nothing."""
        await make_user(email="taken@example.com")
        user = await make_user(email="mine@example.com", name="Keep Me")

        with pytest.raises(ConflictError) as exc_info:
            await user_service.update_user(user.id, UserUpdate(email="taken@example.com", name="Changed"))

        assert exc_info.value.field == "email"
        stored = await user_service.get_user_by_id(user.id)
        assert stored is not None
        assert stored.email == "mine@example.com"

    @pytest.mark.asyncio
    async def test_cpf_taken_by_other_user(self, user_service: UserService, make_user: UserFactory) -> None:
        """Moving to another user's CPF is a conflict."""
        await make_user(cpf="11111111111")
        user = await make_user(cpf="22222222222")

        with pytest.raises(ConflictError) as exc_info:
            await user_service.update_user(user.id, UserUpdate(cpf="111.111.111-11"))

        assert exc_info.value.field == "cpf"

    @pytest.mark.asyncio
    async def test_resubmitting_own_unique_values(self, user_service: UserService, make_user: UserFactory) -> None:
        """A user may resubmit their own email and CPF."""
        user = await make_user(email="me@example.com", cpf="33333333333")

        updated = await user_service.update_user(
            user.id, UserUpdate(email="me@example.com", cpf="33333333333", name="Same Data")
        )

        assert updated.name == "Same Data"


# ==================== delete_user ====================


class TestDeleteUser:
    """Tests for deleting users."""

    @pytest.mark.asyncio
    async def test_deletes(self, user_service: UserService, make_user: UserFactory) -> None:
        """Deleted users are gone for good."""
        user = await make_user()

        assert await user_service.delete_user(user.id) is True
        assert await user_service.get_user_by_id(user.id) is None

    @pytest.mark.asyncio
    async def test_missing_user(self, user_service: UserService) -> None:
        """Deleting an unknown id reports False."""
        assert await user_service.delete_user(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_frees_unique_values(self, user_service: UserService, make_user: UserFactory) -> None:
        """After a delete the email and CPF can be registered again."""
        user = await make_user(email="ana@example.com", cpf="12345678901")
        await user_service.delete_user(user.id)

        recreated = await user_service.create_user(UserCreate(**user_payload()))

        assert recreated.email == "ana@example.com"
