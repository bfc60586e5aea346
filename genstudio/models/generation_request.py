# genstudio/models/generation_request.py
from datetime import datetime
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Integer, DateTime, JSON

from genstudio.core.database import Base
from genstudio.models._time import utcnow

if TYPE_CHECKING:
    from genstudio.models.artifact import Artifact

# Kinds
KIND_TEMPLATE = "TEMPLATE"
KIND_CUSTOM = "CUSTOM"
KIND_CAPTION = "CAPTION"

# Image pipeline
STATUS_PROCESSING = "PROCESSING"
STATUS_GENERATING = "GENERATING"
# Caption pipeline
STATUS_ANALYZING_IMAGE = "ANALYZING_IMAGE"
STATUS_ANALYZING_CAPTIONS = "ANALYZING_CAPTIONS"
# Shared terminal states
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"

TERMINAL_STATUSES: FrozenSet[str] = frozenset({STATUS_COMPLETED, STATUS_FAILED})

# Forward-only order per pipeline; both terminal states share the last rank
_IMAGE_FLOW: Tuple[str, ...] = (STATUS_PROCESSING, STATUS_GENERATING)
_CAPTION_FLOW: Tuple[str, ...] = (STATUS_ANALYZING_IMAGE, STATUS_ANALYZING_CAPTIONS)

STATUS_FLOWS: Dict[str, Tuple[str, ...]] = {
    KIND_TEMPLATE: _IMAGE_FLOW,
    KIND_CUSTOM: _IMAGE_FLOW,
    KIND_CAPTION: _CAPTION_FLOW,
}


def initial_status(kind: str) -> str:
    return STATUS_FLOWS[kind][0]


def can_transition(kind: str, current: Optional[str], target: str) -> bool:
    """Forward-only check. FAILED is reachable from any non-terminal state."""
    if current in TERMINAL_STATUSES:
        return False
    if target in TERMINAL_STATUSES:
        return True
    flow = STATUS_FLOWS.get(kind, ())
    if current not in flow or target not in flow:
        return False
    return flow.index(target) > flow.index(current)


def allowed_sources(kind: str, target: str) -> List[str]:
    """Statuses from which ``target`` may be entered, for guarded UPDATEs."""
    flow = STATUS_FLOWS.get(kind, ())
    if target in TERMINAL_STATUSES:
        return list(flow)
    if target not in flow:
        return []
    return list(flow[: flow.index(target)])


class GenerationRequest(Base):
    """One pipeline run. All cross-step state of a run lives here."""
    __tablename__ = "generation_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Caller-visible id: req_<ms>_<rand> / caption_<ms>_<rand>
    request_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)

    kind: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(30), index=True)

    template_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    include_business_info: Mapped[bool] = mapped_column(default=False)

    # Staged text
    original_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enhanced_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    analysis_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    business_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    input_fields: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # aspect_ratio, style, platform, tone, caption_length, language ...
    options: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    analysis_model: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    generation_model: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    # Stage 1: prompt analysis / image analysis
    analysis_input_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    analysis_output_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Stage 2: final prompt / caption analysis
    refinement_input_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refinement_output_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Images billed, kept apart from token counts
    generation_units: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    total_artifacts: Mapped[int] = mapped_column(Integer, default=0)
    failed_artifacts: Mapped[int] = mapped_column(Integer, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    artifacts: Mapped[List["Artifact"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="Artifact.ordinal",
    )

    @property
    def is_partial(self) -> bool:
        return self.status == STATUS_COMPLETED and self.failed_artifacts > 0
