"""SQLAlchemy models backing the document store."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from core.clock import utcnow
from core.database import Base

# JSONB on PostgreSQL so field-equality queries can use GIN indexes;
# plain JSON elsewhere.
DocumentData = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Document(TimestampMixin, Base):
    """A schemaless document addressed by (collection, doc_id).

    Collections used by the streak engine: ``streaks`` (keyed by user id),
    ``recoveryAssessments`` (keyed by generated id) and ``objectives``.
    """

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict] = mapped_column(DocumentData, nullable=False, default=dict)
