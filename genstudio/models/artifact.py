# genstudio/models/artifact.py
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Integer, DateTime, Boolean, ForeignKey, JSON, UniqueConstraint

from genstudio.core.database import Base
from genstudio.models._time import utcnow

if TYPE_CHECKING:
    from genstudio.models.generation_request import GenerationRequest


class Artifact(Base):
    """A stored output of a run. Only ever written after a successful upload."""
    __tablename__ = "artifacts"
    __table_args__ = (UniqueConstraint("request_pk", "ordinal", name="uq_artifact_request_ordinal"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    request_pk: Mapped[str] = mapped_column(
        String(36), ForeignKey("generation_requests.id", ondelete="CASCADE"), index=True
    )
    ordinal: Mapped[int] = mapped_column(Integer)

    url: Mapped[str] = mapped_column(String(1024))
    storage_path: Mapped[str] = mapped_column(String(512))
    file_name: Mapped[str] = mapped_column(String(255))
    content_type: Mapped[str] = mapped_column(String(80))
    byte_size: Mapped[int] = mapped_column(Integer)

    # Image metadata
    seed: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    generation_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Caption payload
    text_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hashtags: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    request: Mapped["GenerationRequest"] = relationship(back_populates="artifacts")
