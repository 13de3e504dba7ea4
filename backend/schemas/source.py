# backend/schemas/source.py

import uuid
from typing import Literal

from pydantic import BaseModel, Field

from backend.schemas.chat import utc_now_iso

SourceFileType = Literal["text", "markdown", "pdf", "web"]


class Source(BaseModel):
    """An uploaded document the conversations can be grounded in"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    file_type: SourceFileType = "text"
    chunk_count: int = 0
    char_count: int = 0
    created_at: str = Field(default_factory=utc_now_iso)


class CreateSourceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    text: str = Field(..., min_length=1, description="Raw document text")
    file_type: SourceFileType = "text"
