"""Async client for the streaming chat API."""

from chatstream.client.api import ChatAPIClient
from chatstream.client.consumer import ConsumerState, StreamConsumer, TurnOutcome
from chatstream.client.reconciliation import Transcript, TurnStatus
from chatstream.client.session import ChatSession

__all__ = [
    "ChatAPIClient",
    "ChatSession",
    "ConsumerState",
    "StreamConsumer",
    "Transcript",
    "TurnOutcome",
    "TurnStatus",
]
