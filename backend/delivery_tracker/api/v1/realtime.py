"""
WebSocket endpoints streaming realtime events.

Clients authenticate with the ``token`` query parameter. Customers may
follow their own orders, partners the orders assigned to them and their own
partner channel; administrators may follow anything. Unauthorized
connections are closed with a policy-violation code before being accepted.
"""

import asyncio
from contextlib import suppress
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from delivery_tracker.api.deps import identity_from_credentials, open_repositories
from delivery_tracker.core.exceptions import NotFoundError
from delivery_tracker.core.logging import get_logger, set_channel
from delivery_tracker.core.security import Identity, TokenError
from delivery_tracker.realtime.broker import ChannelBroker, Subscription
from delivery_tracker.realtime.events import order_channel, partner_channel
from delivery_tracker.services.orders.store import OrderStore

logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["realtime"])


async def _authenticate(websocket: WebSocket, token: Optional[str]) -> Optional[Identity]:
    try:
        return identity_from_credentials(token)
    except TokenError as e:
        logger.warning("WebSocket authentication failed", reason=e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_dict())


async def _drain(websocket: WebSocket) -> None:
    with suppress(WebSocketDisconnect):
        while True:
            await websocket.receive_text()


async def _stream(websocket: WebSocket, broker: ChannelBroker, channel: str) -> None:
    await websocket.accept()
    set_channel(channel)
    logger.info("WebSocket subscribed")

    async with broker.subscribe(channel) as subscription:
        sender = asyncio.create_task(_forward(websocket, subscription))
        receiver = asyncio.create_task(_drain(websocket))
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    logger.info("WebSocket unsubscribed", dropped=subscription.dropped)
    set_channel(None)
    for task in done:
        error = task.exception()
        if error is not None and not isinstance(error, WebSocketDisconnect):
            raise error


@router.websocket("/orders/{order_id}")
async def order_updates(
    websocket: WebSocket,
    order_id: str,
    token: Optional[str] = Query(None),
) -> None:
    """Status and location updates of one order."""
    identity = await _authenticate(websocket, token)
    if identity is None:
        return

    async with open_repositories(websocket.app) as repositories:
        store = OrderStore(repositories.orders, settings=websocket.app.state.settings)
        try:
            await store.get_visible_order(order_id, identity)
        except NotFoundError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await _stream(websocket, websocket.app.state.broker, order_channel(order_id))


@router.websocket("/partners/{partner_id}")
async def partner_updates(
    websocket: WebSocket,
    partner_id: UUID,
    token: Optional[str] = Query(None),
) -> None:
    """New-order offers and acceptance confirmations for one partner."""
    identity = await _authenticate(websocket, token)
    if identity is None:
        return

    if not identity.is_admin and identity.user_id != partner_id:
        logger.warning(
            "WebSocket subscription denied",
            partner_id=str(partner_id),
            caller_id=str(identity.user_id),
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await _stream(websocket, websocket.app.state.broker, partner_channel(partner_id))
