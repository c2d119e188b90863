from datetime import datetime
import uuid

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base, declarative_mixin

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


@declarative_mixin
class IdMixin:
    id = Column(String(36), primary_key=True, default=new_id)


@declarative_mixin
class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
