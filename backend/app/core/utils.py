"""Core utility functions."""

from urllib.parse import urlparse, urlunparse

# Async driver -> sync driver used by Alembic
_SYNC_DRIVERS = {
    "+asyncpg": "+psycopg",
    "+aiosqlite": "",
}


def convert_async_db_url_to_sync(database_url: str) -> str:
    """
    Convert an async database URL to one a synchronous engine can use.

    ``postgresql+asyncpg://`` becomes ``postgresql+psycopg://`` (psycopg3) and
    ``sqlite+aiosqlite://`` becomes ``sqlite://``. Other URLs are returned
    unchanged.

    Args:
        database_url: The async database URL

    Returns:
        The sync database URL
    """
    parsed_url = urlparse(database_url)
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        if async_driver in parsed_url.scheme:
            sync_scheme = parsed_url.scheme.replace(async_driver, sync_driver)
            return urlunparse(parsed_url._replace(scheme=sync_scheme))
    return database_url
