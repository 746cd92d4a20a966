"""Stream session orchestration - turns one chat request into an ordered stream of events.

A turn runs as its own task and writes events into an EventChannel that the HTTP
response drains. If the client goes away the channel is closed: later events are
dropped, but the turn still runs to the end so the conversation stays consistent
on reload.

    start -> user_message_saved -> ai_model_selected -> thinking -> chunk* -> complete -> done
                                                   (any failure) -> error
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Coroutine

from chatstream.core.config import settings
from chatstream.core.exceptions import PersistenceError, ProviderError, ProviderNotAvailableError
from chatstream.models.conversation import ChatMessage
from chatstream.schemas import Attachment, TurnRequest
from chatstream.services.background.processor import BackgroundProcessor
from chatstream.services.llm.base import BaseLLMProvider, Chunk, Completion, Message
from chatstream.services.llm.registry import ProviderRegistry
from chatstream.services.llm.selection import select_model
from chatstream.services.persistence import PersistenceGateway, message_payload
from chatstream.wire import StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"


class SessionState(str, Enum):
    INIT = "init"
    RESOLVING_CONVERSATION = "resolving_conversation"
    PERSISTING_USER_MESSAGE = "persisting_user_message"
    GENERATING = "generating"
    PERSISTING_ASSISTANT_MESSAGE = "persisting_assistant_message"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


class EventChannel:
    """Ordered, single-consumer handoff from a running turn to its response body."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: StreamEvent) -> bool:
        if self._closed:
            logger.debug(f"Client gone, dropping {event.type.value} event")
            return False
        self._queue.put_nowait(event)
        return True

    def end(self) -> None:
        self._queue.put_nowait(None)

    def close(self) -> None:
        """The consumer is gone. Nothing emitted after this is delivered."""
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


def derive_title(content: str, attachments: list[Attachment], max_chars: int = 50) -> str:
    content = content.strip()
    if content:
        return content[:max_chars] + ("..." if len(content) > max_chars else "")
    if attachments:
        return ", ".join(a.label for a in attachments)[:max_chars]
    return DEFAULT_TITLE


def _user_prompt(content: str, attachments: list[Attachment]) -> str:
    if not attachments:
        return content
    names = ", ".join(f"{a.label} ({a.file_type})" for a in attachments)
    return f"{content}\n\n[Attached files: {names}]".strip()


def _error_message(error: Exception) -> str:
    if isinstance(error, ProviderError):
        return f"The AI service failed to respond ({error.provider}). Please try again."
    if isinstance(error, ProviderNotAvailableError):
        return str(error)
    if isinstance(error, PersistenceError):
        return "Failed to save the conversation. Please try again."
    return "Failed to process message"


class StreamSession:
    """One turn: resolve the conversation, save the user message, generate, save the reply."""

    def __init__(
        self,
        request: TurnRequest,
        gateway: PersistenceGateway,
        registry: ProviderRegistry,
        processor: BackgroundProcessor,
        channel: EventChannel | None = None,
        user_id: int | None = None,
        history_limit: int | None = None,
    ):
        self.request = request
        self.gateway = gateway
        self.registry = registry
        self.processor = processor
        self.channel = channel or EventChannel()
        self.user_id = settings.user_id if user_id is None else user_id
        self.history_limit = settings.history_limit if history_limit is None else history_limit

        self.state = SessionState.INIT
        self.conversation_id: str | None = None
        self.user_message: ChatMessage | None = None
        self.assistant_message: ChatMessage | None = None

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Turn {self.conversation_id or '<new>'}: {self.state.value} -> {state.value}")
        self.state = state

    def _emit(self, event: StreamEvent) -> None:
        self.channel.emit(event)

    async def run(self) -> None:
        """Drive the turn to a terminal state. Never raises; failures become an error event."""
        self._emit(StreamEvent.start())
        try:
            await self._execute()
        except Exception as e:
            logger.exception(f"Turn failed during {self.state.value}")
            self._transition(SessionState.ERROR)
            self._emit(StreamEvent.error(_error_message(e)))
        finally:
            self.channel.end()

    async def _execute(self) -> None:
        self._transition(SessionState.RESOLVING_CONVERSATION)
        conversation_id, history = self._resolve_conversation()

        self._transition(SessionState.PERSISTING_USER_MESSAGE)
        attachments = self.request.attachments
        self.user_message = self.gateway.insert_message(
            conversation_id,
            "user",
            self.request.content,
            metadata={"attachments": [a.model_dump() for a in attachments]} if attachments else None,
        )
        self._emit(StreamEvent.user_message_saved(conversation_id, message_payload(self.user_message)))

        self._transition(SessionState.GENERATING)
        provider, model = self._select_provider()
        self._emit(StreamEvent.ai_model_selected(provider.name, model))
        self._emit(StreamEvent.thinking())
        text = await self._generate(provider, model, history)
        self._emit(StreamEvent.complete(text))

        self._transition(SessionState.PERSISTING_ASSISTANT_MESSAGE)
        self.assistant_message = self.gateway.insert_message(conversation_id, "assistant", text)

        self._transition(SessionState.FINALIZING)
        try:
            self.gateway.update_conversation_timestamp(conversation_id)
        except PersistenceError:
            # the reply is already saved, a stale updated_at only affects list ordering
            logger.exception(f"Failed to bump updated_at for {conversation_id}")
        self._dispatch_post_processing(conversation_id, text)

        self._transition(SessionState.DONE)
        self._emit(
            StreamEvent.done(
                conversation_id,
                user_message=message_payload(self.user_message),
                ai_message=message_payload(self.assistant_message),
            )
        )

    def _resolve_conversation(self) -> tuple[str, list[ChatMessage]]:
        """Reuse the requested conversation if it exists, otherwise start a new one.

        Returns the conversation id and, for a reused conversation, its recent history.
        """
        requested = self.request.conversation_id
        if requested:
            conv = self.gateway.get_conversation(requested)
            if conv and conv.user_id == self.user_id:
                self.conversation_id = conv.id
                return conv.id, self.gateway.query_history(conv.id, limit=self.history_limit)
            logger.info(f"Conversation {requested} not found, starting a new one")

        title = derive_title(self.request.content, self.request.attachments, settings.title_max_chars)
        conv = self.gateway.insert_conversation(self.user_id, title)
        self.conversation_id = conv.id
        return conv.id, []

    def _select_provider(self) -> tuple[BaseLLMProvider, str]:
        config = self.request.provider_config
        requested = (config.provider, config.model)
        if self.request.automatic_model_selection:
            requested = select_model(self.request.content, self.request.attachments, requested, self.registry)
        provider, model = self.registry.resolve(*requested)
        logger.info(f"Using {provider.name}/{model} for {self.conversation_id}")
        return provider, model

    async def _generate(self, provider: BaseLLMProvider, model: str, history: list[ChatMessage]) -> str:
        messages = [Message(role="system", content=settings.system_prompt)]
        messages += [Message(role=m.role, content=m.content) for m in history]
        messages.append(Message(role="user", content=_user_prompt(self.request.content, self.request.attachments)))

        buffer: list[str] = []
        final: str | None = None
        stream = provider.generate(messages, model)
        try:
            async for event in stream:
                if isinstance(event, Chunk):
                    if event.text:
                        buffer.append(event.text)
                        self._emit(StreamEvent.chunk(event.text))
                elif isinstance(event, Completion):
                    final = event.text
                    break
        finally:
            await stream.aclose()  # type: ignore[attr-defined]

        text = final if final is not None else "".join(buffer)
        if not text:
            raise ProviderError(provider.name, "Provider returned an empty response")
        return text

    def _dispatch_post_processing(self, conversation_id: str, assistant_text: str) -> None:
        try:
            self.processor.dispatch(
                assistant_text,
                self.request.content,
                conversation_id,
                has_attachments=bool(self.request.attachments),
            )
        except Exception:
            logger.exception(f"Failed to dispatch post-processing for {conversation_id}")


class TurnRunner:
    """Owns the tasks of running turns so they outlive a dropped response."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} running turn(s)")
            await asyncio.gather(*self._tasks, return_exceptions=True)
