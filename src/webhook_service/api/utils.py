"""Helper utilities for API handlers."""
from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from aiohttp import web

TEnum = TypeVar("TEnum", bound=Enum)


async def read_json(request: web.Request, *, allow_empty: bool = False) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    if allow_empty and not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_enum(enum_cls: type[TEnum], value: str | None, label: str) -> TEnum | None:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value.upper())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise web.HTTPBadRequest(text=f"Invalid {label}; expected one of: {allowed}") from exc


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "pageSize": limit,
    }
