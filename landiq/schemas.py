from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .core.errors import ValidationError

class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# ----- Input -----

class PropertyInput(CamelModel):
    property_description: str = Field(min_length=10)
    acreage: float = Field(ge=0.1)
    location: str = Field(min_length=2)
    irrigated: bool = False
    tillable: bool = False
    crop_type: Optional[str] = None

def field_errors(exc) -> List[Dict[str, str]]:
    """One {field, message} entry per violated field (pydantic or FastAPI request errors)."""
    out = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        out.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return out

def parse_property_input(data: Dict[str, Any]) -> PropertyInput:
    """Validate a raw mapping into a PropertyInput or raise ValidationError."""
    try:
        return PropertyInput.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(field_errors(exc)) from exc

# ----- Valuation result -----

class PropertySummary(CamelModel):
    acreage: float
    location: str
    features: List[str] = []

class ValuationFigures(CamelModel):
    p10: float = Field(ge=0)
    p50: float = Field(ge=0)
    p90: float = Field(ge=0)
    total_value: float = Field(ge=0)
    price_per_acre: float = Field(ge=0)

class Analysis(CamelModel):
    narrative: str
    key_factors: List[str] = []
    confidence: float = Field(ge=0, le=1)

class ComparableSale(CamelModel):
    description: str
    location: str
    date: str
    price_per_acre: float = Field(gt=0)
    total_price: float = Field(gt=0)
    acreage: float = Field(gt=0)
    features: List[str] = []
    source_url: Optional[str] = None

class Source(CamelModel):
    title: str
    organization: str
    url: str

class ValuationResult(CamelModel):
    property: PropertySummary
    valuation: ValuationFigures
    analysis: Analysis
    comparable_sales: List[ComparableSale] = []
    sources: List[Source] = []
    timestamp: str

# ----- Persisted valuation (read path) -----

class StoredValuation(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    property_description: str
    location: str
    acreage: str
    irrigated: bool
    tillable: bool
    crop_type: Optional[str] = None
    p10: float
    p50: float
    p90: float
    total_value: float
    price_per_acre: float
    confidence: float
    narrative: str
    key_factors: List[str] = []
    comparable_sales: List[Dict[str, Any]] = []
    sources: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime

# ----- Agent / meta -----

class AgentMessageRequest(CamelModel):
    session_id: Optional[str] = None
    message: str = Field(min_length=1)

class AgentMessageResponse(CamelModel):
    session_id: str
    message: str

class HealthResponse(BaseModel):
    status: str
    timestamp: str
