# FILE: genstudio/services/context_service.py
import logging
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from genstudio.models.business_profile import BusinessProfile

logger = logging.getLogger("genstudio.context")


class BusinessProfileStore(Protocol):
    async def get_profile(self, tenant_id: str) -> Optional[Any]: ...


class SqlBusinessProfileStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_profile(self, tenant_id: str) -> Optional[BusinessProfile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(BusinessProfile).where(BusinessProfile.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()


def format_business_context(profile: Any) -> str:
    """Render present profile fields as prompt lines."""
    lines = [f"Business: {profile.business_name}"]
    if profile.description:
        lines.append(f"Description: {profile.description}")
    if profile.category:
        lines.append(f"Category: {profile.category}")
    if profile.brand_voice:
        lines.append(f"Brand Voice: {profile.brand_voice}")
    if profile.target_audience:
        lines.append(f"Target Audience: {profile.target_audience}")
    if profile.brand_colors and isinstance(profile.brand_colors, list):
        lines.append(f"Brand Colors: {', '.join(str(c) for c in profile.brand_colors)}")
    return "\n".join(lines)


class ContextBuilder:
    def __init__(self, profiles: BusinessProfileStore):
        self.profiles = profiles

    async def build_context(self, tenant_id: str) -> Optional[str]:
        """Business context for prompts, or None. Never raises."""
        try:
            profile = await self.profiles.get_profile(tenant_id)
            if not profile:
                return None
            return format_business_context(profile)
        except Exception as e:
            logger.error(f"Error building business context for {tenant_id}: {e}")
            return None
