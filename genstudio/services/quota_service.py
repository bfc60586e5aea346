# FILE: genstudio/services/quota_service.py
import logging
from dataclasses import dataclass

from genstudio.core.config import CAPTION_UNITS, IMAGE_BASE_UNITS
from genstudio.core.errors import NoActiveSubscription, QuotaExceeded
from genstudio.services.usage_ledger import UNLIMITED, UsageLedger

logger = logging.getLogger("genstudio.quota")


@dataclass
class QuotaSnapshot:
    tenant_id: str
    limit: int
    used: int
    required: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> int:
        return self.limit - self.used


def image_units(image_count: int) -> int:
    return IMAGE_BASE_UNITS + image_count


def caption_units() -> int:
    return CAPTION_UNITS


class QuotaGuard:
    """
    Advisory pre-flight check against the usage ledger.

    Nothing is reserved: two concurrent runs for one tenant can both pass and
    together overshoot the plan limit by a few units.
    """

    def __init__(self, ledger: UsageLedger):
        self.ledger = ledger

    async def check_quota(self, tenant_id: str, required_units: int) -> QuotaSnapshot:
        limit = await self.ledger.get_plan_limit(tenant_id)
        period = await self.ledger.get_billing_period(tenant_id)
        if limit is None or period is None:
            raise NoActiveSubscription(tenant_id)

        period_start, period_end = period
        used = await self.ledger.count_successful_calls(tenant_id, period_start, period_end)
        snapshot = QuotaSnapshot(tenant_id=tenant_id, limit=limit, used=used, required=required_units)

        if not snapshot.unlimited and snapshot.remaining < required_units:
            raise QuotaExceeded(
                f"Insufficient requests. Need {required_units} requests, you have "
                f"{snapshot.remaining} remaining (actual usage: {used}/{limit}).",
                required=required_units,
                remaining=snapshot.remaining,
                used=used,
                limit=limit,
            )

        logger.info(
            f"Quota check for {tenant_id}: {required_units} required, "
            f"{'unlimited' if snapshot.unlimited else snapshot.remaining} remaining (used {used})"
        )
        return snapshot
