import logging
from typing import Any, Dict, List, Optional

from ..core.errors import NotFoundError
from ..core.utils import decimal_text
from ..data.base import ValuationStore
from ..data.tables import Valuation
from ..models.base import ValuationProvider
from ..schemas import PropertyInput, ValuationResult

logger = logging.getLogger(__name__)

def valuation_row(prop: PropertyInput, result: ValuationResult) -> Dict[str, Any]:
    """Flatten input + result into the column values of a valuations row."""
    return {
        "property_description": prop.property_description,
        "location": prop.location,
        "acreage": decimal_text(prop.acreage),
        "irrigated": prop.irrigated,
        "tillable": prop.tillable,
        "crop_type": prop.crop_type,
        "p10": result.valuation.p10,
        "p50": result.valuation.p50,
        "p90": result.valuation.p90,
        "total_value": result.valuation.total_value,
        "price_per_acre": result.valuation.price_per_acre,
        "confidence": result.analysis.confidence,
        "narrative": result.analysis.narrative,
        "key_factors": list(result.analysis.key_factors),
        "comparable_sales": [c.model_dump(by_alias=True, exclude_none=True) for c in result.comparable_sales],
        "sources": [s.model_dump(by_alias=True) for s in result.sources],
    }

class ValuationService:
    """
    Orchestrates:
      property input → model valuation → stored row
    and the read paths over stored rows. Nothing is retried.
    """
    def __init__(self, provider: ValuationProvider, store: ValuationStore):
        self.provider = provider
        self.store = store

    async def create_valuation(self, prop: PropertyInput) -> ValuationResult:
        result = await self.provider.produce_valuation(prop)
        row = await self.store.create_valuation(valuation_row(prop, result))
        logger.info(
            "Stored valuation %s for %s acres in %s (p50=%s)",
            row.id, row.acreage, row.location, result.valuation.p50,
        )
        return result

    async def get_valuation(self, valuation_id: int) -> Valuation:
        row: Optional[Valuation] = await self.store.get_valuation(valuation_id)
        if row is None:
            raise NotFoundError("Valuation not found")
        return row

    async def recent(self, limit: int = 10) -> List[Valuation]:
        return await self.store.get_recent_valuations(limit)

    async def by_location(self, location: str, limit: int = 5) -> List[Valuation]:
        return await self.store.get_valuations_by_location(location, limit)
