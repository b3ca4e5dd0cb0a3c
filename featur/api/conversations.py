"""
Featur: Conversations API

Conversation creation, messaging, read receipts and the live message
WebSocket.  The socket streams full message snapshots; the underlying
subscription is cancelled as soon as the client disconnects.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from featur.api.deps import get_container, get_ws_container, http_error
from featur.container import Container
from featur.errors import FeaturError
from featur.schemas.conversation import (
    Conversation,
    ConversationCreate,
    GroupConversationCreate,
    MarkReadRequest,
    Message,
    MessageCreate,
)

logger = structlog.get_logger("featur.api.conversations")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /: Get or create a 1:1 conversation
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/", response_model=Conversation, summary="Get or create a conversation")
async def get_or_create_conversation(
    payload: ConversationCreate,
    container: Container = Depends(get_container),
) -> Conversation:
    try:
        return await container.conversations.get_or_create_conversation(
            payload.user_id, payload.other_user_id
        )
    except FeaturError as exc:
        raise http_error(exc)


@router.post(
    "/groups",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
    summary="Create a group conversation",
)
async def create_group(
    payload: GroupConversationCreate,
    container: Container = Depends(get_container),
) -> Conversation:
    try:
        return await container.conversations.create_group_conversation(
            payload.creator_id, payload.participant_ids, payload.group_name
        )
    except FeaturError as exc:
        raise http_error(exc)


@router.get("/user/{user_id}", response_model=list[Conversation])
async def list_conversations(
    user_id: str,
    container: Container = Depends(get_container),
) -> list[Conversation]:
    try:
        return await container.conversations.fetch_conversations(user_id)
    except FeaturError as exc:
        raise http_error(exc)


# ──────────────────────────────────────────────────────────────────────────────
# Messages
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{conversation_id}/messages", response_model=list[Message])
async def list_messages(
    conversation_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    container: Container = Depends(get_container),
) -> list[Message]:
    if await container.conversations.fetch_conversation(conversation_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation {conversation_id} not found",
        )
    return await container.conversations.fetch_messages(conversation_id, limit)


@router.post(
    "/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: str,
    payload: MessageCreate,
    container: Container = Depends(get_container),
) -> Message:
    log = logger.bind(conversation_id=conversation_id, sender_id=payload.sender_id)
    try:
        message = await container.conversations.send_message(conversation_id, payload)
    except FeaturError as exc:
        log.warning("send_message_rejected", error=str(exc))
        raise http_error(exc)
    return message


@router.post("/{conversation_id}/read", summary="Mark a conversation as read")
async def mark_read(
    conversation_id: str,
    payload: MarkReadRequest,
    container: Container = Depends(get_container),
) -> dict:
    try:
        stamped = await container.conversations.mark_as_read(conversation_id, payload.user_id)
    except FeaturError as exc:
        raise http_error(exc)
    return {"conversationId": conversation_id, "userId": payload.user_id, "stamped": stamped}


# ──────────────────────────────────────────────────────────────────────────────
# WS /{conversation_id}/live: Live message snapshots
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/{conversation_id}/live")
async def live_messages(
    websocket: WebSocket,
    conversation_id: str,
    limit: Optional[int] = None,
    container: Container = Depends(get_ws_container),
) -> None:
    log = logger.bind(conversation_id=conversation_id)
    if await container.conversations.fetch_conversation(conversation_id) is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    log.info("live_socket_opened")

    async def _forward(snapshot) -> None:
        await websocket.send_json(snapshot.model_dump(mode="json", by_alias=True))

    subscription = await container.conversations.listen(conversation_id, _forward, limit)
    try:
        # Client frames are ignored; receive() only detects the disconnect.
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        log.debug("live_socket_disconnected")
    finally:
        await subscription.cancel()
        log.info("live_socket_closed")
