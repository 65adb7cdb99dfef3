from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..data.db import get_session
from ..data.valuation_store import SqlValuationStore
from ..models.base import ValuationProvider
from ..models.openai_model import OpenAIValuationModel
from ..schemas import PropertyInput, StoredValuation, ValuationResult
from ..services.valuation_service import ValuationService

router = APIRouter()

_provider: ValuationProvider | None = None

def get_provider() -> ValuationProvider:
    # Construct once; the OpenAI client underneath is shared for the process.
    global _provider
    if _provider is None:
        _provider = OpenAIValuationModel()
    return _provider

def service_dep(
    session: AsyncSession = Depends(get_session),
    provider: ValuationProvider = Depends(get_provider),
) -> ValuationService:
    return ValuationService(provider, SqlValuationStore(session))

@router.post("/valuations", response_model=ValuationResult)
async def create_valuation(body: PropertyInput, svc: ValuationService = Depends(service_dep)):
    return await svc.create_valuation(body)

@router.get("/valuations/recent", response_model=List[StoredValuation])
async def recent_valuations(
    limit: int = Query(10, ge=1, le=100),
    svc: ValuationService = Depends(service_dep),
):
    return await svc.recent(limit)

@router.get("/valuations/location/{location}", response_model=List[StoredValuation])
async def valuations_by_location(
    location: str,
    limit: int = Query(5, ge=1, le=100),
    svc: ValuationService = Depends(service_dep),
):
    return await svc.by_location(location, limit)

@router.get("/valuations/{valuation_id}", response_model=StoredValuation)
async def get_valuation(valuation_id: int, svc: ValuationService = Depends(service_dep)):
    return await svc.get_valuation(valuation_id)
