"""View helpers for the users table: sorting, pagination links, formatting.

Sorting only reorders the page that was fetched from the service. It never
changes which rows are on the page, so the server order (newest first)
decides page membership and the sort decides display order within it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Literal
from urllib.parse import urlencode

from app.schemas.users import PaginationMeta, UserResponse

SortDirection = Literal["asc", "desc"]

SORTABLE_FIELDS: dict[str, str] = {
    "name": "Name",
    "email": "Email",
    "cpf": "CPF",
    "phone": "Phone",
    "birth_date": "Birth date",
}


@dataclass(frozen=True)
class SortState:
    """Current sort column and direction."""

    field: str
    direction: SortDirection = "asc"

    def toggled(self, field: str) -> "SortState":
        """
        State after clicking a column header.

        The active column flips between asc and desc; any other column
        starts ascending.
        """
        if field == self.field and self.direction == "asc":
            return SortState(field, "desc")
        return SortState(field, "asc")

    @property
    def indicator(self) -> str:
        return "↑" if self.direction == "asc" else "↓"


def parse_sort(field: str | None, direction: str | None) -> SortState | None:
    """Build a SortState from query parameters, ignoring unknown columns."""
    if field not in SORTABLE_FIELDS:
        return None
    return SortState(field, "desc" if direction == "desc" else "asc")


def _sort_key(field: str):  # noqa: ANN202
    def key(user: UserResponse) -> str | date:
        value = getattr(user, field)
        return value.casefold() if isinstance(value, str) else value

    return key


def sort_page(users: Sequence[UserResponse], sort: SortState | None) -> list[UserResponse]:
    """
    Reorder the rows of the current page.

    Args:
        users: Rows as returned by the service, in server order
        sort: Requested sort, or None to keep server order

    Returns:
        A new list; the input is left untouched
    """
    if sort is None:
        return list(users)
    return sorted(users, key=_sort_key(sort.field), reverse=sort.direction == "desc")


def page_numbers(pagination: PaginationMeta) -> list[int]:
    """Every page number, one link each."""
    return list(range(1, pagination.last_page + 1))


def users_url(page: int = 1, search: str | None = None, sort: SortState | None = None) -> str:
    """Query-string URL for the users page, omitting defaults."""
    params: dict[str, str | int] = {}
    if page != 1:
        params["page"] = page
    if search:
        params["search"] = search
    if sort is not None:
        params["sort"] = sort.field
        params["direction"] = sort.direction
    return f"/users?{urlencode(params)}" if params else "/users"


def format_birth_date(value: date) -> str:
    """dd/mm/yyyy, the format used on the table."""
    return value.strftime("%d/%m/%Y")


def avatar_initial(name: str) -> str:
    return name[:1].upper()
