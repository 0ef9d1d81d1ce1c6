from pydantic import BaseModel, Field
from datetime import datetime, timezone
import uuid

def gen_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    # naïf en UTC, comme les dates déjà stockées dans les JSON
    return datetime.now(timezone.utc).replace(tzinfo=None)

class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: datetime | None = None):
        object.__setattr__(self, "updated_at", now or utcnow())
