"""Request parsing and response shaping shared by the route modules."""
from __future__ import annotations

from typing import Any, Type, TypeVar
from uuid import UUID

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

TModel = TypeVar("TModel", bound=BaseModel)

_TRUE = frozenset({"true", "1", "yes"})
_FALSE = frozenset({"false", "0", "no"})


class PageParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @property
    def page(self) -> int:
        return self.offset // self.limit + 1


def _bad_request(exc: ValidationError) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(text=exc.json(), content_type="application/json")


async def read_dto(request: web.Request, model: Type[TModel]) -> TModel:
    """Validate a JSON object body into ``model``; any problem is a 400."""
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise _bad_request(exc) from exc


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_bool(value: str | None, label: str) -> bool | None:
    if not value:
        return None
    if value.lower() in _TRUE:
        return True
    if value.lower() in _FALSE:
        return False
    raise web.HTTPBadRequest(text=f"Invalid {label}: expected true or false")


def pagination_params(request: web.Request) -> PageParams:
    try:
        return PageParams.model_validate(dict(request.rel_url.query))
    except ValidationError as exc:
        raise _bad_request(exc) from exc


def paginated_response(items: list[Any], page: PageParams, *, key: str, total: int) -> dict[str, Any]:
    return {
        key: items,
        "total": total,
        "page": page.page,
        "page_size": page.limit,
    }
