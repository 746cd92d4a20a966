"""Client chat session - one conversation view: submit, stream, reconcile."""

import asyncio
import logging

from chatstream.client.api import ChatAPIClient
from chatstream.client.consumer import StreamConsumer, TurnOutcome
from chatstream.client.reconciliation import Transcript, TranscriptEntry
from chatstream.core.exceptions import TurnInProgressError
from chatstream.schemas import Attachment, ProviderConfig, TurnRequest

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        api: ChatAPIClient,
        conversation_id: str | None = None,
        provider_config: ProviderConfig | None = None,
        automatic_model_selection: bool = False,
    ):
        self.api = api
        self.consumer = StreamConsumer(api)
        self.transcript = Transcript(conversation_id)
        self.provider_config = provider_config or ProviderConfig()
        self.automatic_model_selection = automatic_model_selection

    @property
    def conversation_id(self) -> str | None:
        return self.transcript.conversation_id

    @property
    def busy(self) -> bool:
        return self.consumer.active or self.transcript.pending is not None

    async def open(self, conversation_id: str) -> None:
        """Switch to an existing conversation and load its saved messages."""
        if self.busy:
            raise TurnInProgressError("Cannot switch conversations while a reply is streaming")
        self.transcript = Transcript(conversation_id)
        self.transcript.load(await self.api.list_messages(conversation_id))

    def entries(self) -> list[TranscriptEntry]:
        return self.transcript.entries(streaming_text=self.consumer.text if self.consumer.active else None)

    async def send(self, content: str, attachments: list[Attachment] | None = None) -> TurnOutcome:
        if self.busy:
            raise TurnInProgressError("Wait for the current reply before sending another message")

        attachments = attachments or []
        # validated before anything is shown, so a rejected body leaves no optimistic entry
        request = TurnRequest(
            content=content,
            conversation_id=self.conversation_id,
            provider_config=self.provider_config,
            attachments=attachments,
            automatic_model_selection=self.automatic_model_selection,
        )
        turn_id = self.transcript.submit(content, attachments)

        try:
            outcome = await self.consumer.consume(request)
        except asyncio.CancelledError:
            self.transcript.fail(turn_id, "cancelled")
            raise
        except Exception as e:
            logger.exception("Turn aborted by an unexpected client error")
            self.transcript.fail(turn_id, str(e))
            raise

        # the server may have started a new conversation, even on a failed turn
        if outcome.conversation_id:
            self.transcript.bind(outcome.conversation_id)

        if not outcome.ok:
            self.transcript.fail(turn_id, outcome.error)
            return outcome

        saved = [m for m in (outcome.user_message, outcome.ai_message) if m]
        if len(saved) < 2 and self.conversation_id:
            logger.debug("Terminal event without saved messages, fetching them")
            saved = await self.api.list_messages(self.conversation_id)
        self.transcript.confirm(turn_id, saved)
        return outcome

    def cancel(self) -> None:
        pending = self.transcript.pending
        self.consumer.cancel()
        if pending is not None:
            self.transcript.fail(pending.turn_id, "cancelled")
