"""Request bodies shared by the HTTP API and the client.

Fields are accepted in snake_case or camelCase (`conversation_id` or `conversationId`).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attachment(RequestModel):
    id: str
    file_name: str
    display_name: Optional[str] = None
    file_type: str
    file_size: int = 0
    url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.file_name


class ProviderConfig(RequestModel):
    provider: str = "google"  # google | openai
    model: Optional[str] = None


class TurnRequest(RequestModel):
    content: str = ""
    conversation_id: Optional[str] = None
    provider_config: ProviderConfig = Field(default_factory=ProviderConfig)
    attachments: list[Attachment] = Field(default_factory=list)
    automatic_model_selection: bool = False

    @model_validator(mode="after")
    def _require_content_or_attachments(self) -> "TurnRequest":
        if not self.content.strip() and not self.attachments:
            raise ValueError("content or attachments required")
        return self
