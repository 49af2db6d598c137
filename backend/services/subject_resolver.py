"""
Subject resolution for ranking batches.

Decides once per batch whether the subject app is durably tracked (it has an
active ``tracked_apps`` row for the tenant and platform) or ephemeral, so the
fetcher and cache never re-check per combo.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.combos import EphemeralSubject, SubjectRef, TrackedSubject
from core.interfaces.repositories import SubjectRepository
from infrastructure.database.models.tracking import TrackedApp

logger = logging.getLogger(__name__)


class SubjectResolver(SubjectRepository):
    """Resolves and registers tracked subjects."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _find(
        self, session: AsyncSession, tenant_id: str, identifier: str, platform: str
    ) -> Optional[TrackedApp]:
        result = await session.execute(
            select(TrackedApp).where(
                TrackedApp.tenant_id == tenant_id,
                TrackedApp.app_store_id == identifier,
                TrackedApp.platform == platform,
            )
        )
        return result.scalar_one_or_none()

    async def resolve(self, tenant_id: str, identifier: str, platform: str) -> SubjectRef:
        if not identifier:
            return EphemeralSubject(identifier="")

        async with self._session_maker() as session:
            app = await self._find(session, tenant_id, identifier, platform)

        if app is None or not app.is_active:
            logger.debug("Subject %s resolved as ephemeral", identifier)
            return EphemeralSubject(identifier=identifier)
        return TrackedSubject(identifier=identifier, tracked_id=app.id)

    async def track(
        self,
        tenant_id: str,
        identifier: str,
        platform: str,
        name: Optional[str] = None,
    ) -> TrackedSubject:
        """Register (or re-activate) a tracked app and return its reference."""
        async with self._session_maker() as session:
            app = await self._find(session, tenant_id, identifier, platform)
            if app is None:
                app = TrackedApp(
                    tenant_id=tenant_id,
                    app_store_id=identifier,
                    platform=platform,
                    name=name,
                )
                session.add(app)
                logger.info("Tracking app %s (%s) for tenant %s", identifier, platform, tenant_id)
            else:
                app.is_active = True
                if name:
                    app.name = name
            await session.commit()
            await session.refresh(app)
            return TrackedSubject(identifier=identifier, tracked_id=app.id)
