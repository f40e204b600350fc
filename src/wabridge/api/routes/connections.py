"""Connection command endpoints."""

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from wabridge.errors import AlreadyConnectedError, NotConnectedError
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import hash_identifier, safe_log_context
from wabridge.sessions.connection import Connection
from wabridge.sessions.engine import ConnectionOptions
from wabridge.sessions.registry import ConnectionRegistry

router = APIRouter(prefix="/connections", tags=["connections"])

logger = get_logger(__name__)

Presence = Literal["unavailable", "available", "composing", "recording", "paused"]


class ConnectRequest(BaseModel):
    webhook_url: str
    webhook_verify_token: str
    client_name: str = "Chrome"
    include_media: bool = True
    sync_full_history: bool = False


class SendMessageRequest(BaseModel):
    jid: str
    message_content: dict[str, Any]


class PresenceRequest(BaseModel):
    type: Presence
    to_jid: str | None = None


class ReadMessagesRequest(BaseModel):
    keys: list[dict[str, Any]]


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def _get_connection(registry: ConnectionRegistry, phone_number: str) -> Connection:
    try:
        return registry.get(phone_number)
    except NotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid phone number")


@router.post("/{phone_number}")
def connect(
    phone_number: str,
    body: ConnectRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> dict:
    options = ConnectionOptions(
        webhook_url=body.webhook_url,
        webhook_verify_token=body.webhook_verify_token,
        client_name=body.client_name,
        include_media=body.include_media,
        sync_full_history=body.sync_full_history,
    )
    try:
        connection = registry.connect(phone_number, options)
    except AlreadyConnectedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid phone number")

    logger.info(
        "connect requested",
        extra={
            "extra_fields": safe_log_context(
                connection=hash_identifier(phone_number), state=connection.state.value
            )
        },
    )
    return {"status": connection.state.value}


@router.delete("/{phone_number}")
def logout(
    phone_number: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> dict:
    connection = _get_connection(registry, phone_number)
    try:
        connection.logout()
    except NotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "logged_out"}


@router.post("/{phone_number}/send-message")
def send_message(
    phone_number: str,
    body: SendMessageRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> dict:
    connection = _get_connection(registry, phone_number)
    try:
        result = connection.send_message(body.jid, body.message_content)
    except NotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"data": result}


@router.post("/{phone_number}/presence")
def send_presence(
    phone_number: str,
    body: PresenceRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> dict:
    connection = _get_connection(registry, phone_number)
    try:
        connection.send_presence(body.type, body.to_jid)
    except NotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok"}


@router.post("/{phone_number}/read-messages")
def read_messages(
    phone_number: str,
    body: ReadMessagesRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> dict:
    connection = _get_connection(registry, phone_number)
    try:
        connection.read_messages(body.keys)
    except NotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok"}
