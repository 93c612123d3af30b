"""Webhook subscription endpoints (admin + read interfaces)."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_bool,
    parse_uuid,
    read_dto,
)
from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import QueueStatus
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    is_active = parse_bool(request.rel_url.query.get("is_active"), "is_active")
    page = pagination_params(request)
    service = await get_webhook_service(request)
    items, total = await service.list_subscriptions(
        is_active=is_active, limit=page.limit, offset=page.offset
    )
    payload = paginated_response(
        [item.public_dump() for item in items],
        page,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    dto = await read_dto(request, WebhookCreateDTO)
    service = await get_webhook_service(request)
    try:
        sub = await service.create_subscription(dto)
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(sub.public_dump(), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        sub = await service.get_subscription(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(sub.public_dump())


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    dto = await read_dto(request, WebhookUpdateDTO)
    service = await get_webhook_service(request)
    try:
        sub = await service.update_subscription(webhook_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(sub.public_dump())


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        await service.delete_subscription(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.Response(status=204)


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def list_webhook_logs(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    success = parse_bool(request.rel_url.query.get("success"), "success")
    page = pagination_params(request)
    service = await get_webhook_service(request)
    try:
        items, total = await service.list_logs(
            webhook_id, success=success, limit=page.limit, offset=page.offset
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        page,
        key="logs",
        total=total,
    )
    return web.json_response(payload)


@routes.get("/api/v1/webhooks/{webhook_id}/queue")
async def list_webhook_queue(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    status_raw = request.rel_url.query.get("status")
    try:
        status = QueueStatus(status_raw) if status_raw else None
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid status") from exc
    page = pagination_params(request)
    service = await get_webhook_service(request)
    try:
        items, total = await service.list_queue(
            webhook_id, status=status, limit=page.limit, offset=page.offset
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        page,
        key="items",
        total=total,
    )
    return web.json_response(payload)
