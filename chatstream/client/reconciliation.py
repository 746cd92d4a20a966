"""Transcript reconciliation - optimistic user messages swapped for saved ones on the terminal event.

Every submission becomes a Turn keyed by a temporary id and tagged OPTIMISTIC. A
turn leaves that state exactly once: CONFIRMED, when the saved messages replace
it, or FAILED, when it is dropped from view. Saved messages are keyed by their
server id, so the same message can never be shown twice.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from chatstream.core.exceptions import TurnInProgressError
from chatstream.schemas import Attachment

logger = logging.getLogger(__name__)


class TurnStatus(str, Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class OptimisticMessage:
    temp_id: str
    content: str
    attachments: tuple[Attachment, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SavedMessage:
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "SavedMessage":
        created_at = datetime.fromisoformat(data["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data["content"],
            created_at=created_at,
            metadata=data.get("metadata"),
        )


@dataclass(frozen=True)
class Turn:
    turn_id: str
    status: TurnStatus
    optimistic: OptimisticMessage
    message_ids: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class TranscriptEntry:
    """One row of the rendered transcript."""
    key: str
    role: str
    content: str
    timestamp: datetime
    status: TurnStatus


def _sort_key(message: SavedMessage) -> tuple[datetime, int]:
    # a user message sorts before an assistant message with the same timestamp
    return message.created_at, 0 if message.role == "user" else 1


class Transcript:
    def __init__(self, conversation_id: str | None = None):
        self.conversation_id = conversation_id
        self._messages: dict[str, SavedMessage] = {}
        self._turns: dict[str, Turn] = {}

    @property
    def pending(self) -> Turn | None:
        return next((t for t in self._turns.values() if t.status == TurnStatus.OPTIMISTIC), None)

    def turn(self, turn_id: str) -> Turn | None:
        return self._turns.get(turn_id)

    def bind(self, conversation_id: str) -> None:
        """Point the transcript at the conversation the server actually used."""
        if conversation_id == self.conversation_id:
            return
        logger.debug(f"Rebinding transcript {self.conversation_id} -> {conversation_id}")
        self.conversation_id = conversation_id
        # messages of the old conversation do not belong here any more
        self._messages = {
            k: m for k, m in self._messages.items() if m.conversation_id == conversation_id
        }

    def load(self, payloads: Iterable[dict[str, Any]]) -> None:
        """Replace saved messages with a fresh server listing. Pending turns stay visible."""
        self._messages = {}
        for data in payloads:
            message = SavedMessage.from_payload(data)
            self._messages[message.id] = message

    def submit(self, content: str, attachments: Iterable[Attachment] = ()) -> str:
        if self.pending is not None:
            raise TurnInProgressError("Wait for the current reply before sending another message")
        turn_id = f"temp-{uuid.uuid4().hex}"
        optimistic = OptimisticMessage(turn_id, content, tuple(attachments))
        self._turns[turn_id] = Turn(turn_id, TurnStatus.OPTIMISTIC, optimistic)
        return turn_id

    def confirm(self, turn_id: str, payloads: Iterable[dict[str, Any]]) -> bool:
        """Swap the optimistic message for the saved ones. A second call for the same turn is a no-op."""
        turn = self._turns.get(turn_id)
        if turn is None or turn.status != TurnStatus.OPTIMISTIC:
            logger.debug(f"Turn {turn_id} already settled, ignoring confirm")
            return False

        ids = []
        for data in payloads:
            message = SavedMessage.from_payload(data)
            if self.conversation_id is None:
                self.conversation_id = message.conversation_id
            if message.conversation_id != self.conversation_id:
                continue
            self._messages[message.id] = message
            ids.append(message.id)

        self._turns[turn_id] = replace(turn, status=TurnStatus.CONFIRMED, message_ids=tuple(ids))
        return True

    def fail(self, turn_id: str, error: str | None = None) -> bool:
        turn = self._turns.get(turn_id)
        if turn is None or turn.status != TurnStatus.OPTIMISTIC:
            return False
        self._turns[turn_id] = replace(turn, status=TurnStatus.FAILED, error=error)
        return True

    def saved_messages(self) -> list[SavedMessage]:
        return sorted(self._messages.values(), key=_sort_key)

    def entries(self, streaming_text: str | None = None) -> list[TranscriptEntry]:
        """The transcript as it should be rendered, optionally with the in-progress reply."""
        rows = [
            TranscriptEntry(m.id, m.role, m.content, m.created_at, TurnStatus.CONFIRMED)
            for m in self.saved_messages()
        ]
        pending = self.pending
        if pending is not None:
            optimistic = pending.optimistic
            rows.append(
                TranscriptEntry(optimistic.temp_id, "user", optimistic.content, optimistic.timestamp, TurnStatus.OPTIMISTIC)
            )
            if streaming_text:
                rows.append(
                    TranscriptEntry(
                        f"{optimistic.temp_id}-reply",
                        "assistant",
                        streaming_text,
                        datetime.now(timezone.utc),
                        TurnStatus.OPTIMISTIC,
                    )
                )
        return rows
