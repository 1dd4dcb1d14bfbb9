#!/usr/bin/env python3
"""CLI tool for user record management.

Runs the same validation and service code as the HTTP API, which makes it
handy for seeding a local database.

Usage:
    # Create a user
    python -m app.cli create-user --name "Ana Silva" --email ana@example.com \\
        --password secret1 --cpf 12345678901 --phone 11999999999 --birth-date 1990-01-01

    # List users (newest first), optionally filtered
    python -m app.cli list-users --page 2 --search silva

    # Delete a user
    python -m app.cli delete-user <user-id>
"""

import argparse
import asyncio
import sys
import uuid
from collections.abc import Awaitable, Callable

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import format_validation_errors
from app.core.config import settings
from app.core.database import dispose_engine, get_session_factory
from app.core.exceptions import UserServiceError
from app.schemas.users import UserCreate
from app.services.user_service import UserService


async def cmd_create_user(args: argparse.Namespace, session: AsyncSession) -> int:
    """
    Create a new user.

    Args:
        args: Parsed command-line arguments
        session: Database session

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        data = UserCreate(
            name=args.name,
            email=args.email,
            password=args.password,
            cpf=args.cpf,
            phone=args.phone,
            birth_date=args.birth_date,
        )
    except ValidationError as e:
        print("❌ Invalid user data:", file=sys.stderr)
        for field, messages in format_validation_errors(e.errors()).items():
            print(f"   {field}: {'; '.join(messages)}", file=sys.stderr)
        return 1

    try:
        user = await UserService(session).create_user(data)
    except UserServiceError as e:
        print(f"❌ Error: {e.message}", file=sys.stderr)
        return 1

    print("✅ Created user successfully!")
    print(f"   User ID:    {user.id}")
    print(f"   Name:       {user.name}")
    print(f"   Email:      {user.email}")
    print(f"   Created at: {user.created_at}")
    return 0


async def cmd_list_users(args: argparse.Namespace, session: AsyncSession) -> int:
    """
    List users one page at a time.

    Args:
        args: Parsed command-line arguments
        session: Database session

    Returns:
        Exit code (0 for success, 1 for error)
    """
    service = UserService(session)
    try:
        if args.search:
            users, pagination = await service.search_users(args.search, args.page, args.per_page)
        else:
            users, pagination = await service.list_users(args.page, args.per_page)
    except UserServiceError as e:
        print(f"❌ Error: {e.message}", file=sys.stderr)
        return 1

    if not users:
        print("No users found")
        return 0

    print(
        f"Showing {pagination.from_} to {pagination.to} of {pagination.total} user(s) "
        f"(page {pagination.current_page} of {pagination.last_page}):\n"
    )
    print(f"{'User ID':<38} {'Name':<30} {'Email':<32} {'CPF':<12} Birth date")
    print("-" * 125)
    for user in users:
        print(f"{user.id!s:<38} {user.name[:30]:<30} {user.email[:32]:<32} {user.cpf:<12} {user.birth_date}")

    if pagination.current_page < pagination.last_page:
        print(f"\n💡 Use --page {pagination.current_page + 1} to see the next page")
    return 0


async def cmd_delete_user(args: argparse.Namespace, session: AsyncSession) -> int:
    """
    Delete a user by UUID.

    Args:
        args: Parsed command-line arguments
        session: Database session

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        user_id = uuid.UUID(args.user_id)
    except ValueError:
        print(f"❌ Error: Invalid UUID '{args.user_id}'", file=sys.stderr)
        return 1

    try:
        deleted = await UserService(session).delete_user(user_id)
    except UserServiceError as e:
        print(f"❌ Error: {e.message}", file=sys.stderr)
        return 1

    if not deleted:
        print(f"❌ Error: User {user_id} not found", file=sys.stderr)
        return 1

    print(f"✅ Deleted user {user_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for every subcommand."""
    parser = argparse.ArgumentParser(
        description="User records management CLI tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    create_parser = subparsers.add_parser("create-user", help="Create a new user")
    create_parser.add_argument("--name", required=True)
    create_parser.add_argument("--email", required=True)
    create_parser.add_argument("--password", required=True)
    create_parser.add_argument("--cpf", required=True, help="11 digits, punctuation allowed")
    create_parser.add_argument("--phone", required=True, help="10 or 11 digits")
    create_parser.add_argument("--birth-date", required=True, help="YYYY-MM-DD")

    list_parser = subparsers.add_parser("list-users", help="List users, newest first")
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument(
        "--per-page",
        type=int,
        default=settings.USERS_PER_PAGE,
        help=f"Users per page (default: {settings.USERS_PER_PAGE})",
    )
    list_parser.add_argument("--search", type=str, default=None, help="Filter by name, email or CPF")

    delete_parser = subparsers.add_parser("delete-user", help="Delete a user permanently")
    delete_parser.add_argument("user_id", type=str, help="User UUID")

    return parser


COMMAND_HANDLERS: dict[str, Callable[[argparse.Namespace, AsyncSession], Awaitable[int]]] = {
    "create-user": cmd_create_user,
    "list-users": cmd_list_users,
    "delete-user": cmd_delete_user,
}


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI tool.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "list-users" and (args.page < 1 or args.per_page < 1):
        print("❌ Error: --page and --per-page must be at least 1", file=sys.stderr)
        return 1

    handler = COMMAND_HANDLERS[args.command]

    async def run_with_session() -> int:
        try:
            async with get_session_factory()() as session:
                return await handler(args, session)
        finally:
            await dispose_engine()

    return asyncio.run(run_with_session())


if __name__ == "__main__":
    sys.exit(main())
