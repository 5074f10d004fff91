"""Thread and user models."""

from datetime import datetime, timezone
import uuid

from pydantic import BaseModel, Field, model_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Thread(BaseModel):
    """A conversation thread."""

    id: str = Field(default_factory=_uuid, description="Unique thread ID")
    user_id: str = Field(..., description="Owning user ID")
    title: str = Field("New Chat", description="Thread title")
    pinned: bool = Field(False, description="Pinned to the top of the thread list")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_now, description="Last update timestamp")

    # Live-streaming flag; stream fields are only set while is_live
    is_live: bool = False
    stream_started_at: datetime | None = None
    current_stream_id: str | None = None

    @model_validator(mode="after")
    def _idle_threads_have_no_stream(self) -> "Thread":
        if not self.is_live:
            self.stream_started_at = None
            self.current_stream_id = None
        return self


class User(BaseModel):
    """Internal user resolved from an external identity token."""

    id: str = Field(default_factory=_uuid)
    external_id: str = Field(..., description="Identity provider subject")
    email: str | None = None
    name: str | None = None
