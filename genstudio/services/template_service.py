# FILE: genstudio/services/template_service.py
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from genstudio.core.errors import TemplateNotFound
from genstudio.models.image_template import ImageTemplate


class TemplateStore(Protocol):
    async def get_active(self, template_id: str) -> ImageTemplate: ...


class SqlTemplateStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_active(self, template_id: str) -> ImageTemplate:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ImageTemplate).where(ImageTemplate.id == template_id, ImageTemplate.is_active.is_(True))
            )
            template: Optional[ImageTemplate] = result.scalar_one_or_none()
        if not template:
            raise TemplateNotFound(f"Template {template_id} not found or inactive")
        return template

    async def list_active(self, category: Optional[str] = None) -> List[ImageTemplate]:
        stmt = select(ImageTemplate).where(ImageTemplate.is_active.is_(True))
        if category:
            stmt = stmt.where(ImageTemplate.category == category)
        async with self.session_factory() as db:
            result = await db.execute(stmt.order_by(ImageTemplate.sort_order, ImageTemplate.name))
            return list(result.scalars().all())
