import uuid
from datetime import datetime, timezone
from sqlalchemy import JSON, String
from sqlalchemy.dialects.postgresql import ARRAY

# text[] on postgres, a JSON array everywhere else
TagList = ARRAY(String).with_variant(JSON(), 'sqlite')


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
