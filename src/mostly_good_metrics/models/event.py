"""
Event models and the ingestion wire format (POST /v1/events).

Wire field names are the snake_case attribute names. Optional fields that are
None are omitted from the wire form rather than sent as null.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_serializer, field_validator

Properties = dict[str, JsonValue]


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds (the wire precision)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WireModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump(mode="json").items() if v is not None}


class Event(WireModel):
    name: str
    client_event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    platform: str
    app_version: Optional[str] = None
    app_build_number: Optional[str] = None
    os_version: Optional[str] = None
    environment: str
    device_manufacturer: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None
    properties: Optional[Properties] = None

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Event":
        return cls.model_validate(data)


class EventContext(WireModel):
    """Batch-level context, snapshotted at send time."""

    platform: str
    app_version: Optional[str] = None
    app_build_number: Optional[str] = None
    os_version: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    environment: str
    device_manufacturer: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None


class EventsPayload(BaseModel):
    events: list[Event]
    context: EventContext

    def to_wire(self) -> dict[str, Any]:
        return {
            "events": [e.to_wire() for e in self.events],
            "context": self.context.to_wire(),
        }


class UserProfile(BaseModel):
    """Profile data sent with the $identify event."""
    email: Optional[str] = None
    name: Optional[str] = None

    def to_properties(self) -> Properties:
        props: Properties = {}
        if self.email is not None:
            props["email"] = self.email
        if self.name is not None:
            props["name"] = self.name
        return props


class SendResult(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"


class SendResponse(BaseModel):
    result: SendResult
    status_code: Optional[int] = None
    retry_after: Optional[float] = None  # seconds, from the Retry-After header
