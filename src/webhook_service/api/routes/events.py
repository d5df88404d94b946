"""Event ingestion endpoint for internal producers."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json
from webhook_service.domain.dto import EventDTO, describe_errors
from webhook_service.services.dependencies import get_components, require_tenant

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def publish_event(request: web.Request):
    tenant = require_tenant(request)
    body = await read_json(request)
    try:
        dto = EventDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=describe_errors(exc)) from exc

    attempts = await get_components(request).dispatcher.dispatch(
        tenant.tenant_id, dto.event_type, dto.payload
    )
    return web.json_response(
        {"attempts": len(attempts), "attemptIds": [str(a.id) for a in attempts]},
        status=202,
    )
