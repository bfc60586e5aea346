from datetime import datetime, timedelta

import pytest

from genstudio.core.errors import NoActiveSubscription, QuotaExceeded
from genstudio.models.api_call_log import ApiCallLog, CALL_FAILED, CALL_SUCCESS
from genstudio.models._time import utcnow
from genstudio.services.quota_service import QuotaGuard, caption_units, image_units
from genstudio.services.usage_ledger import UNLIMITED, SqlUsageLedger

from conftest import add_subscription


class StaticLedger:
    def __init__(self, limit, used, period=True):
        self.limit = limit
        self.used = used
        self.period = (datetime(2026, 1, 1), datetime(2026, 2, 1)) if period else None

    async def count_successful_calls(self, tenant_id, period_start, period_end):
        return self.used

    async def get_plan_limit(self, tenant_id):
        return self.limit

    async def get_billing_period(self, tenant_id):
        return self.period


def test_unit_costs():
    assert image_units(3) == 6
    assert image_units(12) == 15
    assert caption_units() == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("used", [0, 10_000, 1_000_000])
async def test_unlimited_plan_never_rejects(used):
    snapshot = await QuotaGuard(StaticLedger(UNLIMITED, used)).check_quota("t1", 15)
    assert snapshot.unlimited


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "limit,used,required,ok",
    [
        (100, 94, 6, True),
        (100, 95, 6, False),
        (10, 0, 10, True),
        (10, 9, 2, False),
        (0, 0, 1, False),
    ],
)
async def test_finite_plan_rejects_iff_remaining_below_required(limit, used, required, ok):
    guard = QuotaGuard(StaticLedger(limit, used))
    if ok:
        snapshot = await guard.check_quota("t1", required)
        assert snapshot.remaining == limit - used
    else:
        with pytest.raises(QuotaExceeded) as exc:
            await guard.check_quota("t1", required)
        assert exc.value.required == required
        assert exc.value.remaining == limit - used


@pytest.mark.asyncio
async def test_quota_message_reports_usage():
    with pytest.raises(QuotaExceeded) as exc:
        await QuotaGuard(StaticLedger(20, 18)).check_quota("t1", 6)
    assert str(exc.value) == (
        "Insufficient requests. Need 6 requests, you have 2 remaining (actual usage: 18/20)."
    )


@pytest.mark.asyncio
async def test_missing_subscription_is_rejected():
    with pytest.raises(NoActiveSubscription):
        await QuotaGuard(StaticLedger(None, 0)).check_quota("t1", 2)
    with pytest.raises(NoActiveSubscription):
        await QuotaGuard(StaticLedger(10, 0, period=False)).check_quota("t1", 2)


@pytest.mark.asyncio
async def test_sql_ledger_counts_only_successful_calls_in_period(session_factory):
    await add_subscription(session_factory, "tenant-a", limit=5)
    now = utcnow()
    async with session_factory() as db:
        db.add_all([
            ApiCallLog(tenant_id="tenant-a", endpoint="image-generator/analyze-prompt", status=CALL_SUCCESS),
            ApiCallLog(tenant_id="tenant-a", endpoint="image-generator/analyze-prompt", status=CALL_SUCCESS),
            ApiCallLog(tenant_id="tenant-a", endpoint="image-generator/analyze-prompt", status=CALL_FAILED),
            ApiCallLog(tenant_id="tenant-a", endpoint="old", status=CALL_SUCCESS, created_at=now - timedelta(days=40)),
            ApiCallLog(tenant_id="tenant-b", endpoint="other", status=CALL_SUCCESS),
        ])
        await db.commit()

    ledger = SqlUsageLedger(session_factory)
    guard = QuotaGuard(ledger)

    snapshot = await guard.check_quota("tenant-a", 2)
    assert snapshot.used == 2
    assert snapshot.remaining == 3

    with pytest.raises(QuotaExceeded):
        await guard.check_quota("tenant-a", 4)
    with pytest.raises(NoActiveSubscription):
        await guard.check_quota("tenant-b", 1)
