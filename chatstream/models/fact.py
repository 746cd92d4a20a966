"""Facts extracted from completed turns by background post-processing."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class ExtractedFact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: str = Field(foreign_key="conversation.id", index=True)
    kind: str  # "memory" | "nutrition"
    category: str = Field(default="context")
    summary: str
    normalized: str = Field(index=True)
    importance: float = Field(default=0.5)
    data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
