# genstudio/models/api_call_log.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, DateTime

from genstudio.core.database import Base
from genstudio.models._time import utcnow

CALL_SUCCESS = "SUCCESS"
CALL_FAILED = "FAILED"
CALL_RATE_LIMITED = "RATE_LIMITED"
CALL_TIMEOUT = "TIMEOUT"


class ApiCallLog(Base):
    """Append-only log of remote AI calls. Usage is always derived from it."""
    __tablename__ = "api_call_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)

    # e.g. image-generator/analyze-prompt, caption-generator/analyze-generated-captions
    endpoint: Mapped[str] = mapped_column(String(120))
    method: Mapped[str] = mapped_column(String(10), default="POST")
    model_used: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    # SUCCESS, FAILED, RATE_LIMITED, TIMEOUT
    status: Mapped[str] = mapped_column(String(20), index=True)

    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    input_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    request_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
