"""Client stream consumer - decodes the event stream and tracks the in-progress reply.

    IDLE -> CONNECTING -> STREAMING -> COMPLETED | FAILED
                      (cancel at any point) -> CANCELLED
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from chatstream.client.api import ChatAPIClient
from chatstream.core.exceptions import TurnInProgressError
from chatstream.schemas import TurnRequest
from chatstream.wire import EventDecoder, EventType, StreamEvent

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATES = frozenset({ConsumerState.COMPLETED, ConsumerState.FAILED, ConsumerState.CANCELLED})


@dataclass
class TurnOutcome:
    state: ConsumerState
    conversation_id: str | None = None
    text: str = ""
    user_message: dict[str, Any] | None = None
    ai_message: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == ConsumerState.COMPLETED


class StreamConsumer:
    def __init__(self, api: ChatAPIClient):
        self.api = api
        self._reset()

    def _reset(self) -> None:
        self.state = ConsumerState.IDLE
        self.thinking = False
        self.streaming = False
        self.conversation_id: str | None = None
        self.model: tuple[str, str] | None = None
        self.user_message: dict[str, Any] | None = None
        self.ai_message: dict[str, Any] | None = None
        self.error: str | None = None
        self._buffer: list[str] = []
        self._full_response: str | None = None
        self._task: asyncio.Task | None = None
        self._interrupted = False

    @property
    def active(self) -> bool:
        return self.state in (ConsumerState.CONNECTING, ConsumerState.STREAMING)

    @property
    def text(self) -> str:
        """What the user currently sees of the reply."""
        if self._full_response is not None:
            return self._full_response
        return "".join(self._buffer)

    def outcome(self) -> TurnOutcome:
        return TurnOutcome(
            state=self.state,
            conversation_id=self.conversation_id,
            text=self.text,
            user_message=self.user_message,
            ai_message=self.ai_message,
            error=self.error,
        )

    def handle_event(self, event: StreamEvent) -> None:
        if self.state in FINISHED_STATES:
            logger.debug(f"Ignoring {event.type.value} event after {self.state.value}")
            return

        payload = event.payload
        if event.type in (EventType.START, EventType.THINKING):
            self.state = ConsumerState.STREAMING
            self.thinking = True

        elif event.type == EventType.USER_MESSAGE_SAVED:
            self.conversation_id = payload.get("conversation_id") or self.conversation_id
            self.user_message = payload.get("message")

        elif event.type == EventType.AI_MODEL_SELECTED:
            self.model = (payload.get("provider", ""), payload.get("model", ""))
            logger.debug(f"Model selected: {self.model[0]}/{self.model[1]}")

        elif event.type == EventType.CHUNK:
            if self._full_response is not None:
                logger.warning("Chunk after complete, ignoring")
                return
            self.thinking = False
            self.streaming = True
            self._buffer.append(payload.get("content", ""))

        elif event.type == EventType.COMPLETE:
            self.thinking = False
            self.streaming = False
            # frozen but kept visible until the transcript swaps in the saved reply
            self._full_response = payload.get("full_response", "".join(self._buffer))

        elif event.type == EventType.DONE:
            self.state = ConsumerState.COMPLETED
            self.thinking = False
            self.streaming = False
            self.conversation_id = payload.get("conversation_id") or self.conversation_id
            self.user_message = payload.get("user_message") or self.user_message
            self.ai_message = payload.get("ai_message")

        elif event.type == EventType.ERROR:
            self._fail(payload.get("message") or "An error occurred while processing your message.")

    def _fail(self, message: str) -> None:
        logger.warning(f"Turn failed: {message}")
        self.state = ConsumerState.FAILED
        self.error = message
        self.thinking = False
        self.streaming = False
        self._buffer = []
        self._full_response = None

    def cancel(self) -> None:
        """Stop consuming. No later event is applied and the connection is closed.

        Called from another task, the pending read is interrupted right away so a
        quiet provider cannot hold the socket open.
        """
        if self.state in FINISHED_STATES:
            return
        logger.debug("Stream cancelled")
        self.state = ConsumerState.CANCELLED
        self.thinking = False
        self.streaming = False
        self._buffer = []
        self._full_response = None

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            self._interrupted = True
            task.cancel()

    async def consume(self, request: TurnRequest) -> TurnOutcome:
        """Run one turn to a finished state and return how it ended."""
        if self.active:
            raise TurnInProgressError("A turn is already streaming")

        self._reset()
        self.state = ConsumerState.CONNECTING
        self._task = asyncio.current_task()
        decoder = EventDecoder()

        try:
            async with self.api.stream_turn(request) as response:
                if response.status_code != 200:
                    await response.aread()
                    self._fail(f"Request rejected ({response.status_code}): {response.text[:200]}")
                    return self.outcome()

                async for data in response.aiter_bytes():
                    for event in decoder.feed(data):
                        self.handle_event(event)
                    if self.state in FINISHED_STATES:
                        break
                else:
                    for event in decoder.flush():
                        self.handle_event(event)
        except asyncio.CancelledError:
            if not self._interrupted:
                self.cancel()
                raise
            # our own cancel(); leaving the `async with` above closed the response
            self._task.uncancel()  # type: ignore[union-attr]
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self.state not in FINISHED_STATES:
                self._fail(f"Connection error: {e}")
        except Exception as e:
            if self.state not in FINISHED_STATES:
                self._fail(f"Unexpected error: {e}")
            raise
        finally:
            self._task = None

        if self.active:
            self._fail("The connection closed before the reply finished.")
        return self.outcome()
