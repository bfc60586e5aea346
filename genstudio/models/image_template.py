# genstudio/models/image_template.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, DateTime, Boolean

from genstudio.core.database import Base
from genstudio.models._time import utcnow


class ImageTemplate(Base):
    """Prompt template with {field} placeholders filled from request input."""
    __tablename__ = "image_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    category: Mapped[str] = mapped_column(String(60), index=True)
    prompt_template: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
