from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from typing import Any, cast
from uuid import UUID

import structlog
from fastapi import APIRouter, status
from fastapi.websockets import WebSocket, WebSocketDisconnect
from redis.asyncio.client import PubSub, Redis
from starlette.websockets import WebSocketState

from studio.core.config import Settings, get_settings
from studio.tasks.broadcaster import TaskEventBroadcaster

router = APIRouter(prefix="/ws", tags=["tasks"])
logger = structlog.get_logger(__name__)


@router.websocket("/projects/{project_id}/tasks")
async def project_task_events(websocket: WebSocket, project_id: UUID) -> None:
    """Stream ``TASK_CREATED``/``TASK_UPDATED`` events for one project."""

    redis_maybe = getattr(websocket.app.state, "redis", None)
    if redis_maybe is None:
        await _reject_websocket(
            websocket,
            code=status.WS_1011_INTERNAL_ERROR,
            reason="Task updates unavailable",
        )
        return

    redis = cast(Redis, redis_maybe)
    settings = cast(
        Settings, getattr(websocket.app.state, "settings", None) or get_settings()
    )
    heartbeat_interval = settings.websocket.heartbeat_interval_seconds
    inactivity_timeout = settings.websocket.inactivity_timeout_seconds

    # Subscribe before accepting so no event published after the handshake is lost.
    channel = TaskEventBroadcaster.channel_name(project_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)

    try:
        await websocket.accept()
        logger.info("task_ws_connected", project_id=str(project_id))
        await _stream(
            websocket,
            pubsub,
            project_id=project_id,
            heartbeat_interval=heartbeat_interval,
            inactivity_timeout=inactivity_timeout,
        )
    except WebSocketDisconnect:
        logger.info("task_ws_client_disconnected", project_id=str(project_id))
    finally:
        await _close_pubsub(pubsub, channel)


async def _stream(
    websocket: WebSocket,
    pubsub: PubSub,
    *,
    project_id: UUID,
    heartbeat_interval: float,
    inactivity_timeout: float,
) -> None:
    last_activity = time.monotonic()

    while True:
        try:
            message = await asyncio.wait_for(
                pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=heartbeat_interval
                ),
                timeout=inactivity_timeout,
            )
        except TimeoutError:
            message = None

        if message is None:
            idle = time.monotonic() - last_activity
            if idle >= inactivity_timeout:
                await websocket.close(
                    code=status.WS_1011_INTERNAL_ERROR,
                    reason="Task updates timed out",
                )
                logger.warning("task_ws_timeout", project_id=str(project_id))
                return

            if not await _send_safe(websocket, _heartbeat_payload()):
                logger.info("task_ws_heartbeat_skipped", project_id=str(project_id))
                return
            continue

        payload = _decode_pubsub_message(message)
        if payload is None:
            continue

        if not await _send_safe(websocket, payload):
            logger.info("task_ws_send_failed", project_id=str(project_id))
            return
        last_activity = time.monotonic()


async def _close_pubsub(pubsub: PubSub, channel: str) -> None:
    try:
        await pubsub.unsubscribe(channel)
    except Exception as exc:  # pragma: no cover - connection already gone
        logger.debug("task_ws_unsubscribe_failed", channel=channel, error=str(exc))
    finally:
        await pubsub.aclose()


async def _reject_websocket(
    websocket: WebSocket, *, code: int, reason: str | None = None
) -> None:
    if websocket.client_state is WebSocketState.DISCONNECTED:
        return
    try:
        await websocket.close(code=code, reason=reason)
    except RuntimeError:
        return


async def _send_safe(websocket: WebSocket, payload: dict[str, Any]) -> bool:
    if websocket.client_state is not WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(payload)
    except WebSocketDisconnect:
        raise
    except RuntimeError:
        return False
    return True


def _decode_pubsub_message(message: dict[str, Any]) -> dict[str, Any] | None:
    data = message.get("data")
    if data is None:
        return None
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        parsed = json.loads(data)
    except (TypeError, json.JSONDecodeError):
        logger.warning("task_ws_invalid_payload", raw=data)
        return None
    if not isinstance(parsed, dict) or "type" not in parsed:
        logger.warning("task_ws_unexpected_payload", raw=parsed)
        return None
    return cast(dict[str, Any], parsed)


def _heartbeat_payload() -> dict[str, Any]:
    return {"type": "heartbeat", "sentAt": datetime.now(UTC).isoformat()}
