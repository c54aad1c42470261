# Pydantic models for Kafka message structures
import datetime
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Dict, Optional, Union

INT64_MIN = -2**63
INT64_MAX = 2**63 - 1

# Producers send either numeric or string user ids; both are kept exactly as received.
# Numeric ids must fit the store's 64-bit integers.
UserId = Union[Annotated[StrictInt, Field(ge=INT64_MIN, le=INT64_MAX)], StrictStr]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

class EventMetadata(CamelModel):
    source: str
    version: str
    processed_at: Optional[datetime.datetime] = None

class RawEvent(CamelModel):
    event_id: Optional[str] = None # Filled in by the transform when missing
    user_id: UserId
    session_id: str
    event_type: str
    timestamp: str # ISO-8601, stored as received
    properties: Dict[str, Any] = Field(default_factory=dict) # Open schema
    metadata: EventMetadata

    @field_validator('timestamp')
    @classmethod
    def timestamp_must_be_iso8601(cls, v: str) -> str:
        try:
            datetime.datetime.fromisoformat(v.replace('Z', '+00:00'))
        except ValueError:
            raise ValueError('timestamp must be in ISO-8601 format')
        return v

def parse_raw_event(payload: bytes) -> RawEvent:
    """
    Decodes a Kafka message value into a RawEvent.

    Raises UnicodeDecodeError for non UTF-8 bytes and pydantic.ValidationError
    for invalid JSON or a payload that does not match the event shape.
    """
    return RawEvent.model_validate_json(payload.decode('utf-8'))
