from typing import Any, Literal
from pydantic import BaseModel

class StreamMessage(BaseModel):
    type: Literal["event", "stats", "error"]
    payload: Any = None
