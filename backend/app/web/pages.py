"""HTML pages for browsing and editing users."""

from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app import __version__
from app.api.users import get_user_service
from app.core.config import settings
from app.core.exceptions import StorageError
from app.schemas.users import PaginationMeta, UserResponse
from app.services.user_service import UserService, calculate_pagination
from app.web.table_view import (
    SORTABLE_FIELDS,
    SortState,
    avatar_initial,
    format_birth_date,
    page_numbers,
    parse_sort,
    sort_page,
    users_url,
)

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"

templates = Jinja2Templates(directory=TEMPLATES_DIR)
templates.env.globals.update(
    project_name=settings.PROJECT_NAME,
    version=__version__,
    users_url=users_url,
    format_birth_date=format_birth_date,
    avatar_initial=avatar_initial,
)

router = APIRouter(tags=["pages"], include_in_schema=False)
logger = structlog.get_logger(__name__)


@router.get("/", response_class=HTMLResponse)
async def index_page(request: Request) -> HTMLResponse:
    """Landing page."""
    return templates.TemplateResponse(request, "index.html")


@router.get("/users", response_class=HTMLResponse)
async def users_page(
    request: Request,
    page: int = Query(1),
    search: str | None = Query(None, max_length=255),
    sort: str | None = Query(None),
    direction: str | None = Query(None),
    service: UserService = Depends(get_user_service),
) -> HTMLResponse:
    """
    Users table with search, pagination and per-page sorting.

    The search term goes to the service; the table shows exactly the rows it
    returns. ``sort``/``direction`` only reorder those rows. Page numbers
    below 1 show the first page.
    """
    page = max(page, 1)
    sort_state = parse_sort(sort, direction)
    search = (search or "").strip() or None
    error: str | None = None
    status_code = 200

    users: list[UserResponse] = []
    pagination: PaginationMeta = calculate_pagination(0, page, settings.USERS_PER_PAGE)
    try:
        if search:
            rows, pagination = await service.search_users(search, page)
        else:
            rows, pagination = await service.list_users(page)
        users = [UserResponse.model_validate(row) for row in rows]
    except StorageError as e:
        logger.error("users_page_load_failed", operation=e.operation, exc_info=e.__cause__ or e)
        error = e.message
        status_code = 500

    # Header links stay on the same page: the active column toggles, others start ascending
    header_links = {
        field: users_url(page, search, sort_state.toggled(field) if sort_state else SortState(field))
        for field in SORTABLE_FIELDS
    }

    return templates.TemplateResponse(
        request,
        "users/index.html",
        {
            "users": sort_page(users, sort_state),
            "pagination": pagination,
            "pages": page_numbers(pagination),
            "search": search or "",
            "sort": sort_state,
            "sortable_fields": SORTABLE_FIELDS,
            "header_links": header_links,
            "error": error,
        },
        status_code=status_code,
    )
