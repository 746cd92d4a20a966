"""Server-to-client event stream: one `data: <json>` record per event, blank-line delimited."""

import codecs
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
RECORD_SEPARATOR = "\n\n"
MEDIA_TYPE = "text/event-stream"


class EventType(str, Enum):
    START = "start"
    THINKING = "thinking"
    USER_MESSAGE_SAVED = "user_message_saved"
    AI_MODEL_SELECTED = "ai_model_selected"
    CHUNK = "chunk"
    COMPLETE = "complete"
    DONE = "done"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.DONE, EventType.ERROR})


@dataclass(frozen=True)
class StreamEvent:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.payload}

    @classmethod
    def from_dict(cls, data: Any) -> "StreamEvent":
        if not isinstance(data, dict) or "type" not in data:
            raise ValueError(f"Not an event record: {data!r}")
        payload = {k: v for k, v in data.items() if k != "type"}
        return cls(EventType(data["type"]), payload)

    @classmethod
    def start(cls, message: str = "Processing your message") -> "StreamEvent":
        return cls(EventType.START, {"message": message})

    @classmethod
    def thinking(cls) -> "StreamEvent":
        return cls(EventType.THINKING)

    @classmethod
    def user_message_saved(cls, conversation_id: str, message: dict[str, Any]) -> "StreamEvent":
        return cls(EventType.USER_MESSAGE_SAVED, {"conversation_id": conversation_id, "message": message})

    @classmethod
    def ai_model_selected(cls, provider: str, model: str) -> "StreamEvent":
        return cls(EventType.AI_MODEL_SELECTED, {"provider": provider, "model": model})

    @classmethod
    def chunk(cls, content: str) -> "StreamEvent":
        return cls(EventType.CHUNK, {"content": content})

    @classmethod
    def complete(cls, full_response: str) -> "StreamEvent":
        return cls(EventType.COMPLETE, {"full_response": full_response})

    @classmethod
    def done(
        cls,
        conversation_id: str,
        user_message: dict[str, Any] | None = None,
        ai_message: dict[str, Any] | None = None,
    ) -> "StreamEvent":
        return cls(
            EventType.DONE,
            {"conversation_id": conversation_id, "user_message": user_message, "ai_message": ai_message},
        )

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(EventType.ERROR, {"message": message})


def encode_event(event: StreamEvent) -> str:
    return f"{DATA_PREFIX} {json.dumps(event.to_dict(), ensure_ascii=False)}{RECORD_SEPARATOR}"


class EventDecoder:
    """Incremental decoder. Feed it raw reads; it returns every complete event so far.

    A read may end mid-record or mid-character, the remainder is kept until the next
    feed. Malformed records are logged and skipped; invalid bytes are replaced.
    """

    def __init__(self) -> None:
        # bytes that are not valid UTF-8 become U+FFFD instead of aborting the stream
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes | str) -> list[StreamEvent]:
        text = self._utf8.decode(data) if isinstance(data, bytes) else data
        self._buffer += text.replace("\r\n", "\n")

        events = []
        while RECORD_SEPARATOR in self._buffer:
            record, self._buffer = self._buffer.split(RECORD_SEPARATOR, 1)
            event = self._parse(record)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left once the stream has ended."""
        remainder = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        if not remainder.strip():
            return []
        event = self._parse(remainder)
        return [event] if event is not None else []

    @staticmethod
    def _parse(record: str) -> StreamEvent | None:
        data_lines = []
        for line in record.split("\n"):
            if not line or line.startswith(":"):
                continue
            if line.startswith(DATA_PREFIX):
                data_lines.append(line[len(DATA_PREFIX):].lstrip(" "))
        if not data_lines:
            return None

        raw = "\n".join(data_lines)
        try:
            return StreamEvent.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Skipping malformed stream record {raw[:200]!r}: {e}")
            return None
