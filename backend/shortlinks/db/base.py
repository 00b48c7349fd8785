from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

from shortlinks.db.types import UTCDateTime

# JSONB on PostgreSQL, plain JSON on every other backend.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    type_annotation_map = {
        dict: JSONType,
        list: JSONType,
    }


__all__ = ["Base", "JSONType", "UTCDateTime"]
