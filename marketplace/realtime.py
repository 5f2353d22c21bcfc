"""
Marketplace service: realtime channel

One websocket per client at `/ws`. Clients send

    {"event": "join_admin"}
    {"event": "join_order", "data": <order id>}

and receive a `joined` acknowledgement per join, followed by whatever
`new_order` / `message` events are published to their groups from then on.
Memberships vanish as soon as the socket closes.
"""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from . import orders
from .config import Settings
from .errors import Forbidden, MarketplaceError
from .hub import ADMIN_GROUP, NotificationHub, order_group
from .identity import Actor, resolve_actor

logger = logging.getLogger(__name__)


class ClientFrame(BaseModel):
    event: str
    data: Any = None


def _error(code: str) -> dict:
    return {"event": "error", "data": {"error": code}}


def parse_order_id(data: Any) -> int:
    """Accept a JSON integer or a string of digits; reject floats and booleans."""
    if isinstance(data, int) and not isinstance(data, bool):
        return data
    if isinstance(data, str) and data.isascii() and data.isdigit():
        return int(data)
    raise ValueError(f"not an order id: {data!r}")


async def _join_admin(actor: Actor | None, settings: Settings) -> str:
    if settings.chat_participant_check and (actor is None or not actor.is_seller):
        raise Forbidden(ADMIN_GROUP)
    return ADMIN_GROUP


async def _join_order(
    websocket: WebSocket,
    actor: Actor | None,
    settings: Settings,
    data: Any,
) -> str:
    order_id = parse_order_id(data)
    if settings.chat_participant_check:
        async with websocket.app.state.session_factory() as session:
            await orders.ensure_participant(session, actor, order_id, settings.store_timeout)
    return order_group(order_id)


async def handle_frame(
    websocket: WebSocket,
    hub: NotificationHub,
    actor: Actor | None,
    settings: Settings,
    raw: str,
) -> dict:
    """Apply one client frame and return the reply to send back."""
    try:
        frame = ClientFrame.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        return _error("bad_frame")

    try:
        if frame.event == "join_admin":
            group = await _join_admin(actor, settings)
        elif frame.event == "join_order":
            try:
                group = await _join_order(websocket, actor, settings, frame.data)
            except ValueError:
                return _error("invalid_order")
        else:
            return _error("unknown_event")
    except MarketplaceError as e:
        return _error(e.code)

    hub.join(websocket, group)
    return {"event": "joined", "data": {"group": group}}


async def serve(websocket: WebSocket) -> None:
    hub: NotificationHub = websocket.app.state.hub
    settings: Settings = websocket.app.state.settings

    await websocket.accept()
    actor = await resolve_actor(websocket)
    logger.info("Websocket %s connected (user %s)", id(websocket), actor.id if actor else "-")
    try:
        while True:
            raw = await websocket.receive_text()
            reply = await handle_frame(websocket, hub, actor, settings, raw)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
