"""Enqueue interface for collaborators that emit domain events."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.utils import parse_uuid, read_dto
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import EmitEventDTO, EnqueueDTO
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


@routes.post("/api/v1/webhook-queue")
async def enqueue_delivery(request: web.Request):
    dto = await read_dto(request, EnqueueDTO)
    service = await get_webhook_service(request)
    try:
        item = await service.enqueue(dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(item.model_dump(mode="json"), status=201)


@routes.get("/api/v1/webhook-queue/{item_id}")
async def get_queue_item(request: web.Request):
    item_id = parse_uuid(request.match_info["item_id"], "item_id")
    service = await get_webhook_service(request)
    try:
        item = await service.get_queue_item(item_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(item.model_dump(mode="json"))


@routes.post("/api/v1/events")
async def emit_event(request: web.Request):
    dto = await read_dto(request, EmitEventDTO)
    service = await get_webhook_service(request)
    items = await service.emit(event=dto.event.value, data=dto.data)
    return web.json_response(
        {"event": dto.event.value, "enqueued": [str(item.id) for item in items]},
        status=202,
    )
