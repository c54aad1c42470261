from pydantic import BaseModel

class StatsSnapshot(BaseModel):
    processed: int = 0
    indexed: int = 0
    rejected: int = 0
    errors: int = 0
