"""REST API for conversation history."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from chatstream.core.config import settings
from chatstream.core.deps import get_gateway
from chatstream.services.persistence import (
    PersistenceGateway,
    conversation_payload,
    message_payload,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_owned(gateway: PersistenceGateway, conversation_id: str):
    conv = gateway.get_conversation(conversation_id)
    if not conv or conv.user_id != settings.user_id:
        logger.debug(f"Conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.get("/")
async def list_conversations(gateway: PersistenceGateway = Depends(get_gateway)):
    """Conversations of the caller, most recently active first."""
    return [conversation_payload(c) for c in gateway.list_conversations(settings.user_id)]


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, gateway: PersistenceGateway = Depends(get_gateway)):
    conv = _get_owned(gateway, conversation_id)
    return {
        **conversation_payload(conv),
        "messages": [message_payload(m) for m in gateway.list_messages(conversation_id)],
    }


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, gateway: PersistenceGateway = Depends(get_gateway)):
    """Messages of a conversation, oldest first."""
    _get_owned(gateway, conversation_id)
    return [message_payload(m) for m in gateway.list_messages(conversation_id)]
