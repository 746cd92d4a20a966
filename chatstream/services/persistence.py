"""Persistence gateway - the single source of truth for conversations and messages."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from chatstream.core.exceptions import PersistenceError
from chatstream.models.conversation import ChatMessage, Conversation
from chatstream.models.fact import ExtractedFact

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def conversation_payload(conv: Conversation) -> dict[str, Any]:
    return {
        "id": conv.id,
        "user_id": conv.user_id,
        "title": conv.title,
        "created_at": as_utc(conv.created_at).isoformat(),
        "updated_at": as_utc(conv.updated_at).isoformat(),
    }


def message_payload(msg: ChatMessage) -> dict[str, Any]:
    return {
        "id": msg.id,
        "conversation_id": msg.conversation_id,
        "role": msg.role,
        "content": msg.content,
        "metadata": msg.message_metadata,
        "created_at": as_utc(msg.created_at).isoformat(),
    }


class PersistenceGateway:
    """Single-row inserts and updates keyed by id. Each call opens its own session."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        try:
            with Session(self.engine) as session:
                return session.get(Conversation, conversation_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load conversation {conversation_id}: {e}") from e

    def insert_conversation(self, user_id: int, title: str) -> Conversation:
        try:
            with Session(self.engine) as session:
                conv = Conversation(user_id=user_id, title=title)
                session.add(conv)
                session.commit()
                session.refresh(conv)
                logger.debug(f"Created conversation {conv.id} ({title!r})")
                return conv
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create conversation: {e}") from e

    def insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        """Append a message. created_at is strictly later than any earlier message in the conversation."""
        try:
            with Session(self.engine) as session:
                latest = session.exec(
                    select(ChatMessage.created_at)
                    .where(ChatMessage.conversation_id == conversation_id)
                    .order_by(ChatMessage.created_at.desc())  # type: ignore
                    .limit(1)
                ).first()
                created_at = datetime.now(timezone.utc)
                if latest is not None and created_at <= as_utc(latest):
                    created_at = as_utc(latest) + _TICK

                msg = ChatMessage(
                    conversation_id=conversation_id,
                    role=role,
                    content=content,
                    message_metadata=metadata,
                    created_at=created_at,
                )
                session.add(msg)
                session.commit()
                session.refresh(msg)
                return msg
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save {role} message: {e}") from e

    def update_conversation_timestamp(self, conversation_id: str) -> datetime | None:
        """Bump updated_at, always moving it forward. Returns None for an unknown id."""
        try:
            with Session(self.engine) as session:
                conv = session.get(Conversation, conversation_id)
                if not conv:
                    return None
                now = datetime.now(timezone.utc)
                previous = as_utc(conv.updated_at)
                conv.updated_at = now if now > previous else previous + _TICK
                session.add(conv)
                session.commit()
                session.refresh(conv)
                return as_utc(conv.updated_at)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update conversation {conversation_id}: {e}") from e

    def query_history(self, conversation_id: str, limit: int = 20) -> list[ChatMessage]:
        """The last `limit` messages of a conversation, oldest first."""
        try:
            with Session(self.engine) as session:
                recent = session.exec(
                    select(ChatMessage)
                    .where(ChatMessage.conversation_id == conversation_id)
                    .order_by(ChatMessage.created_at.desc())  # type: ignore
                    .limit(limit)
                ).all()
                return list(reversed(recent))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load history for {conversation_id}: {e}") from e

    def list_conversations(self, user_id: int) -> list[Conversation]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(Conversation)
                    .where(Conversation.user_id == user_id)
                    .order_by(Conversation.updated_at.desc())  # type: ignore
                ).all()
            )

    def list_messages(self, conversation_id: str) -> list[ChatMessage]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(ChatMessage)
                    .where(ChatMessage.conversation_id == conversation_id)
                    .order_by(ChatMessage.created_at)  # type: ignore
                ).all()
            )

    def fact_exists(self, conversation_id: str, kind: str, normalized: str) -> bool:
        with Session(self.engine) as session:
            found = session.exec(
                select(ExtractedFact.id)
                .where(ExtractedFact.conversation_id == conversation_id)
                .where(ExtractedFact.kind == kind)
                .where(ExtractedFact.normalized == normalized)
                .limit(1)
            ).first()
            return found is not None

    def insert_fact(self, fact: ExtractedFact) -> ExtractedFact:
        try:
            with Session(self.engine) as session:
                session.add(fact)
                session.commit()
                session.refresh(fact)
                return fact
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save {fact.kind} fact: {e}") from e

    def list_facts(self, conversation_id: str) -> list[ExtractedFact]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(ExtractedFact)
                    .where(ExtractedFact.conversation_id == conversation_id)
                    .order_by(ExtractedFact.id)  # type: ignore
                ).all()
            )
