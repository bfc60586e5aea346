# FILE: genstudio/services/usage_ledger.py
"""Usage ledger: read side for quota checks, append side for the AI client.

Usage is always counted from ``api_call_logs``. There is no running counter to
keep in sync.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from genstudio.core.config import LOG_DIR
from genstudio.models.api_call_log import ApiCallLog, CALL_SUCCESS
from genstudio.models.subscription import TenantSubscription

logger = logging.getLogger("genstudio.usage")

usage_logger = logging.getLogger("genstudio_usage")
if not usage_logger.handlers:
    os.makedirs(LOG_DIR, exist_ok=True)
    handler = logging.FileHandler(os.path.join(LOG_DIR, "usage.log"))
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    usage_logger.setLevel(logging.INFO)
    usage_logger.addHandler(handler)

UNLIMITED = -1


@dataclass
class ApiCallRecord:
    tenant_id: str
    endpoint: str
    status: str
    model_used: Optional[str] = None
    method: str = "POST"
    response_time_ms: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    request_size: Optional[int] = None
    response_size: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


class UsageLedger(Protocol):
    async def count_successful_calls(self, tenant_id: str, period_start: datetime, period_end: datetime) -> int: ...

    async def get_plan_limit(self, tenant_id: str) -> Optional[int]: ...

    async def get_billing_period(self, tenant_id: str) -> Optional[Tuple[datetime, datetime]]: ...


class UsageRecorder(Protocol):
    async def record_call(self, record: ApiCallRecord) -> None: ...


class SqlUsageLedger:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _subscription(self, tenant_id: str) -> Optional[TenantSubscription]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()

    async def count_successful_calls(self, tenant_id: str, period_start: datetime, period_end: datetime) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(ApiCallLog.id)).where(
                    ApiCallLog.tenant_id == tenant_id,
                    ApiCallLog.status == CALL_SUCCESS,
                    ApiCallLog.created_at >= period_start,
                    ApiCallLog.created_at <= period_end,
                )
            )
            return int(result.scalar() or 0)

    async def get_plan_limit(self, tenant_id: str) -> Optional[int]:
        sub = await self._subscription(tenant_id)
        return sub.requests_limit if sub else None

    async def get_billing_period(self, tenant_id: str) -> Optional[Tuple[datetime, datetime]]:
        sub = await self._subscription(tenant_id)
        if not sub:
            return None
        return sub.current_period_start, sub.current_period_end

    async def record_call(self, record: ApiCallRecord) -> None:
        """Append one call. Never raises: ledger trouble must not break a run."""
        try:
            async with self.session_factory() as db:
                db.add(ApiCallLog(
                    tenant_id=record.tenant_id,
                    endpoint=record.endpoint,
                    method=record.method,
                    model_used=record.model_used,
                    status=record.status,
                    response_time_ms=record.response_time_ms,
                    input_tokens=record.input_tokens,
                    output_tokens=record.output_tokens,
                    total_tokens=record.total_tokens,
                    request_size=record.request_size,
                    response_size=record.response_size,
                    error_message=record.error_message,
                    error_code=record.error_code,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to log API call {record.endpoint} for {record.tenant_id}: {e}")
            return

        usage_logger.info(
            f"tenant={record.tenant_id} endpoint={record.endpoint} status={record.status} "
            f"model={record.model_used} tokens={record.total_tokens}"
        )
