from datetime import datetime, timezone
from sqlalchemy.orm import as_declarative, declared_attr
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import DateTime, Uuid
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@as_declarative()
class Base:
    __abstract__ = True  # Prevents creating a table for the base class

    id: Mapped[uuid.UUID]

    @declared_attr
    def __tablename__(cls) -> str:
        return cls.__name__.lower()

    # Generic Uuid maps to native UUID on PostgreSQL and CHAR(32) elsewhere
    id = mapped_column(Uuid(as_uuid=True), primary_key=True, index=True, default=uuid.uuid4)
    # Python-side timestamps so values are populated without a refresh after flush
    created_at = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
