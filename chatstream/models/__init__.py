from chatstream.models.conversation import ChatMessage, Conversation
from chatstream.models.fact import ExtractedFact

__all__ = ["ChatMessage", "Conversation", "ExtractedFact"]
