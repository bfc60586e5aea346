# genstudio/models/subscription.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime

from genstudio.core.database import Base
from genstudio.models._time import utcnow


class TenantSubscription(Base):
    """Current plan window for a tenant. Owned by the billing side."""
    __tablename__ = "tenant_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)

    # Plan slug: free, starter, pro, unlimited
    plan_slug: Mapped[str] = mapped_column(String(30), default="free")

    # Successful AI calls allowed per billing period (-1 = unlimited)
    requests_limit: Mapped[int] = mapped_column(Integer, default=0)

    current_period_start: Mapped[datetime] = mapped_column(DateTime)
    current_period_end: Mapped[datetime] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
