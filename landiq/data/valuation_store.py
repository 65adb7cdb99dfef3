from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import StorageError
from .tables import Valuation

logger = logging.getLogger(__name__)


class SqlValuationStore:
    """
    Insert/select access to the valuations table.
    Any database failure surfaces as StorageError.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_valuation(self, values: Dict[str, Any]) -> Valuation:
        now = datetime.now(timezone.utc)
        row = Valuation(**values, created_at=now, updated_at=now)
        try:
            self.session.add(row)
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Failed to store valuation for %s: %s", values.get("location"), exc)
            raise StorageError(f"Failed to store valuation: {exc}") from exc
        return row

    async def get_valuation(self, valuation_id: int) -> Optional[Valuation]:
        try:
            return await self.session.get(Valuation, valuation_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to fetch valuation: {exc}") from exc

    async def get_recent_valuations(self, limit: int = 10) -> List[Valuation]:
        q = select(Valuation).order_by(Valuation.created_at.desc(), Valuation.id.desc()).limit(limit)
        return await self._all(q, "recent valuations")

    async def get_valuations_by_location(self, location: str, limit: int = 5) -> List[Valuation]:
        # Exact, case-sensitive match on the submitted location text
        q = (
            select(Valuation)
            .where(Valuation.location == location)
            .order_by(Valuation.created_at.desc(), Valuation.id.desc())
            .limit(limit)
        )
        return await self._all(q, "valuations for location")

    async def _all(self, q, what: str) -> List[Valuation]:
        try:
            return list((await self.session.execute(q)).scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to fetch {what}: {exc}") from exc
