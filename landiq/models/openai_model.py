"""OpenAI-backed farmland valuation model.

One outbound call to the Responses API, optionally with live web search,
followed by lenient extraction of the structured result. Garbled output
degrades to default figures instead of failing the request.
"""

from __future__ import annotations

import json
import logging
import time
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..core.config import settings
from ..core.errors import ValuationGenerationError
from ..core.metrics import PROVIDER_LATENCY, VALUATION_FALLBACKS
from ..core.utils import (
    clean_narrative,
    extract_json_object,
    remove_json_object,
    to_number,
    url_host,
    utc_now_iso,
)
from ..schemas import (
    Analysis,
    ComparableSale,
    PropertyInput,
    PropertySummary,
    Source,
    ValuationFigures,
    ValuationResult,
)

logger = logging.getLogger(__name__)

# Per-acre figures used when the model returns nothing structured
FALLBACK_P10 = 7000
FALLBACK_P50 = 8500
FALLBACK_P90 = 10000
FALLBACK_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE = 0.75
FALLBACK_KEY_FACTORS = [
    "Current market analysis based on web search",
    "Regional farmland trends",
    "Property characteristics",
]

VALUATION_FUNCTIONS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "parsePropertyInput",
        "description": "Extract location, acreage, crop type, and irrigation from raw user input",
        "parameters": {
            "type": "object",
            "properties": {"rawInput": {"type": "string"}},
            "required": ["rawInput"],
        },
        "strict": False,
    },
    {
        "type": "function",
        "name": "calculateValuation",
        "description": "Estimate a value range based on reasoning over comp summaries from web search.",
        "parameters": {
            "type": "object",
            "properties": {
                "compSummaries": {"type": "array", "items": {"type": "string"}},
                "targetAcreage": {"type": "number"},
                "location": {"type": "string"},
                "irrigated": {"type": "boolean"},
            },
            "required": ["compSummaries", "targetAcreage", "location"],
        },
        "strict": False,
    },
    {
        "type": "function",
        "name": "generateNarrative",
        "description": "Explain the valuation result and logic in natural language",
        "parameters": {
            "type": "object",
            "properties": {
                "valuationData": {"type": "object"},
                "userInput": {"type": "string"},
            },
            "required": ["valuationData"],
        },
        "strict": False,
    },
    {
        "type": "function",
        "name": "valuationResult",
        "description": "Return the full land valuation result including comparable sales and sources",
        "parameters": {
            "type": "object",
            "properties": {
                "property": {"type": "object"},
                "valuation": {"type": "object"},
                "analysis": {"type": "object"},
                "comparableSales": {"type": "array", "items": {"type": "object"}},
                "sources": {"type": "array", "items": {"type": "object"}},
            },
            "required": ["property", "valuation", "analysis"],
        },
        "strict": False,
    },
]


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """Process-wide client; shared by the valuation model and the agent."""
    return AsyncOpenAI(api_key=settings.OPENAI_API_KEY)


def default_features(prop: PropertyInput) -> List[str]:
    features = ["Irrigated" if prop.irrigated else "Dryland"]
    if prop.tillable:
        features.append("Tillable")
    if prop.crop_type:
        features.append(prop.crop_type)
    return features


def build_prompt(prop: PropertyInput) -> str:
    irrigation = "Yes - with irrigation infrastructure" if prop.irrigated else "No - dryland farming"
    tillage = "Yes - suitable for row crops" if prop.tillable else "No - pasture or non-tillable"
    land_kind = "irrigated" if prop.irrigated else "dryland"
    crop = prop.crop_type or "Mixed agricultural use"
    shape = {
        "property": {
            "location": prop.location,
            "acreage": prop.acreage,
            "cropType": prop.crop_type or "Mixed",
            "irrigated": prop.irrigated,
            "tillable": prop.tillable,
            "features": ["list of key property features"],
        },
        "valuation": {
            "p10": "conservative estimate per acre as number",
            "p50": "most likely estimate per acre as number",
            "p90": "optimistic estimate per acre as number",
            "totalValue": "total property value at P50 as number",
            "pricePerAcre": "P50 value as number",
            "confidence": "0.0 to 1.0 confidence score",
        },
        "analysis": {
            "narrative": "Plain-English explanation of the valuation reasoning, market conditions and research findings",
            "keyFactors": ["list of factors affecting property value"],
            "confidence": "0.0 to 1.0 confidence score",
        },
        "comparableSales": [
            {
                "description": "Property description from web search",
                "location": "Sale location",
                "date": "Sale date",
                "pricePerAcre": "price per acre as number",
                "totalPrice": "total sale price as number",
                "acreage": "property size as number",
                "features": ["property features"],
                "sourceUrl": "URL of the source",
            }
        ],
        "sources": [
            {"title": "Source title", "organization": "Publishing organization", "url": "Source URL"}
        ],
    }
    return (
        "As a professional agricultural land appraiser, research recent farmland sales and "
        "provide a comprehensive valuation for this property.\n\n"
        f"Property Description: {prop.property_description}\n\n"
        "Property Details:\n"
        f"- Location: {prop.location}\n"
        f"- Acreage: {prop.acreage}\n"
        f"- Irrigated: {irrigation}\n"
        f"- Tillable: {tillage}\n"
        f"- Crop Type: {crop}\n\n"
        "Research and analyze:\n"
        f"1. Recent farmland sales in {prop.location} over the last three years\n"
        f"2. Current market prices for {land_kind} farmland in this area\n"
        "3. Regional land value trends and market conditions\n"
        f"4. Comparable properties of similar size ({prop.acreage} acres) and characteristics\n\n"
        "Return the complete valuation as a single JSON object with this shape. The \"narrative\" "
        "field must read like an appraiser's report in plain English, without JSON, code blocks "
        "or other markup.\n\n"
        f"{json.dumps(shape, indent=2)}\n\n"
        "Prefer authoritative sources such as USDA, university extension services, farm real "
        "estate brokers, auction results and agricultural publications."
    )


def _collect_output(response: Any) -> Tuple[str, List[Dict[str, str]], Optional[Dict[str, Any]]]:
    """
    Walk the Responses API output.
    Returns (concatenated text, url citations, structured payload if the model
    produced one through a function call).
    """
    text_parts: List[str] = []
    citations: List[Dict[str, str]] = []
    function_output = None
    result_call = None

    for item in getattr(response, "output", None) or []:
        kind = getattr(item, "type", None)
        if kind == "message":
            for part in getattr(item, "content", None) or []:
                if getattr(part, "type", None) != "output_text":
                    continue
                text_parts.append(getattr(part, "text", "") or "")
                for ann in getattr(part, "annotations", None) or []:
                    if getattr(ann, "type", None) == "url_citation" and getattr(ann, "url", None):
                        citations.append({
                            "title": getattr(ann, "title", None) or "Web Search Result",
                            "organization": url_host(ann.url),
                            "url": ann.url,
                        })
        elif kind == "function_call_output" and function_output is None:
            function_output = _loads_object(getattr(item, "output", None))
        elif kind == "function_call" and getattr(item, "name", None) == "valuationResult" and result_call is None:
            result_call = _loads_object(getattr(item, "arguments", None))

    return "".join(text_parts), citations, function_output or result_call


def _loads_object(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unparseable function payload")
        return None
    return data if isinstance(data, dict) else None


def _has_valuation(payload: Optional[Dict[str, Any]]) -> bool:
    return payload is not None and isinstance(payload.get("valuation"), dict)


def fallback_payload(prop: PropertyInput, text: str, citations: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "property": {"location": prop.location, "acreage": prop.acreage, "features": default_features(prop)},
        "valuation": {
            "p10": FALLBACK_P10,
            "p50": FALLBACK_P50,
            "p90": FALLBACK_P90,
            "totalValue": round(FALLBACK_P50 * prop.acreage),
            "pricePerAcre": FALLBACK_P50,
        },
        "analysis": {"narrative": text, "keyFactors": list(FALLBACK_KEY_FACTORS), "confidence": FALLBACK_CONFIDENCE},
        "comparableSales": [],
        "sources": citations,
    }


def templated_narrative(prop: PropertyInput) -> str:
    kind = "irrigated" if prop.irrigated else "dryland"
    return (
        f"Estimated value for {prop.acreage:g} acres of {kind} farmland in {prop.location}, "
        "based on regional farmland market benchmarks."
    )


def _text(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Model-supplied scalar as a non-empty string; anything else gets `default`."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return default
    text = str(value).strip()
    return text or default


def _labels(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [label for label in (_text(v) for v in value) if label]


def normalize_comparable(sale: Any, prop: PropertyInput) -> Optional[ComparableSale]:
    """
    Fill the one missing member of price-per-acre / total / acreage from the
    other two; reject the sale if it is still incomplete or non-positive.
    """
    if not isinstance(sale, dict):
        return None
    ppa = to_number(sale.get("pricePerAcre"))
    total = to_number(sale.get("totalPrice"))
    acres = to_number(sale.get("acreage"))

    if ppa is None and total is not None and acres:
        ppa = float(round(total / acres))
    elif total is None and ppa is not None and acres is not None:
        total = float(round(ppa * acres))
    elif acres is None and total is not None and ppa:
        acres = round(total / ppa, 2)

    if ppa is None or total is None or acres is None:
        return None
    if ppa <= 0 or total <= 0 or acres <= 0:
        return None

    return ComparableSale(
        description=_text(sale.get("description"), "Comparable farmland sale"),
        location=_text(sale.get("location"), prop.location),
        date=_text(sale.get("date"), "Recent"),
        price_per_acre=ppa,
        total_price=total,
        acreage=acres,
        features=_labels(sale.get("features")),
        source_url=_text(sale.get("sourceUrl")),
    )


def _normalize_sources(raw: Any) -> List[Source]:
    out: List[Source] = []
    for s in raw if isinstance(raw, list) else []:
        url = _text(s.get("url")) if isinstance(s, dict) else None
        if not url:
            continue
        out.append(Source(
            title=_text(s.get("title"), "Web Search Result"),
            organization=_text(s.get("organization")) or url_host(url),
            url=url,
        ))
    return out


def normalize_result(
    payload: Dict[str, Any],
    prop: PropertyInput,
    text: str = "",
    citations: Optional[List[Dict[str, str]]] = None,
) -> ValuationResult:
    """Turn a loosely shaped model payload into a ValuationResult."""
    prop_raw = payload.get("property") if isinstance(payload.get("property"), dict) else {}
    val_raw = payload.get("valuation") if isinstance(payload.get("valuation"), dict) else {}
    ana_raw = payload.get("analysis") if isinstance(payload.get("analysis"), dict) else {}

    features = prop_raw.get("features")
    acreage = to_number(prop_raw.get("acreage"))
    summary = PropertySummary(
        acreage=acreage if acreage and acreage > 0 else prop.acreage,
        location=_text(prop_raw.get("location"), prop.location),
        features=_labels(features) if isinstance(features, list) else default_features(prop),
    )

    p10 = max(0.0, to_number(val_raw.get("p10")) or 0.0)
    p50 = max(0.0, to_number(val_raw.get("p50")) or 0.0)
    p90 = max(0.0, to_number(val_raw.get("p90")) or 0.0)
    price_per_acre = to_number(val_raw.get("pricePerAcre"))
    if price_per_acre is None or price_per_acre < 0:
        price_per_acre = p50
    total_value = to_number(val_raw.get("totalValue"))
    if total_value is None or total_value < 0:
        total_value = float(round(price_per_acre * prop.acreage))
    if not p10 <= p50 <= p90:
        logger.warning("Model percentiles out of order: p10=%s p50=%s p90=%s", p10, p50, p90)

    confidence = to_number(ana_raw.get("confidence"))
    if confidence is None:
        confidence = to_number(val_raw.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    confidence = min(1.0, max(0.0, confidence))

    narrative = clean_narrative(ana_raw.get("narrative") if isinstance(ana_raw.get("narrative"), str) else text)
    if not narrative:
        narrative = templated_narrative(prop)
    factors = ana_raw.get("keyFactors")

    raw_sales = payload.get("comparableSales")
    sales = [normalize_comparable(s, prop) for s in (raw_sales if isinstance(raw_sales, list) else [])]
    comparables = [s for s in sales if s is not None]
    if isinstance(raw_sales, list) and len(comparables) < len(raw_sales):
        logger.info("Dropped %d incomplete comparable sale(s)", len(raw_sales) - len(comparables))

    sources = _normalize_sources(payload.get("sources"))
    if not sources:
        sources = _normalize_sources(citations or [])

    return ValuationResult(
        property=summary,
        valuation=ValuationFigures(
            p10=p10, p50=p50, p90=p90, total_value=total_value, price_per_acre=price_per_acre,
        ),
        analysis=Analysis(
            narrative=narrative,
            key_factors=_labels(factors),
            confidence=confidence,
        ),
        comparable_sales=comparables,
        sources=sources,
        timestamp=utc_now_iso(),
    )


class OpenAIValuationModel:
    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        web_search: bool | None = None,
    ):
        self.client = client or get_openai_client()
        self.model = model or settings.OPENAI_MODEL
        self.web_search = settings.WEB_SEARCH_ENABLED if web_search is None else web_search

    def tools(self) -> List[Dict[str, Any]]:
        tools: List[Dict[str, Any]] = []
        if self.web_search:
            tools.append({
                "type": "web_search_preview",
                "search_context_size": settings.WEB_SEARCH_CONTEXT_SIZE,
                "user_location": {"type": "approximate", "country": "US"},
            })
        return tools + VALUATION_FUNCTIONS

    async def produce_valuation(self, prop: PropertyInput) -> ValuationResult:
        """Ask the model for a valuation of `prop` and normalize whatever comes back.

        Raises
        ------
        ValuationGenerationError
            The upstream call itself failed (network, auth, quota...).
        """
        start = time.perf_counter()
        try:
            response = await self.client.responses.create(
                model=self.model,
                tools=self.tools(),
                input=build_prompt(prop),
                tool_choice="auto",
            )
        except (OpenAIError, httpx.HTTPError) as exc:
            logger.error("Valuation request to %s failed: %s", self.model, exc)
            raise ValuationGenerationError(f"Failed to generate valuation: {exc}") from exc
        finally:
            PROVIDER_LATENCY.labels(operation="valuation").observe(time.perf_counter() - start)

        text, citations, payload = _collect_output(response)
        prose = text
        if not _has_valuation(payload):
            payload = extract_json_object(text)
            prose = remove_json_object(text)
        if not _has_valuation(payload):
            VALUATION_FALLBACKS.inc()
            logger.warning("No structured valuation in model output for %s; using default figures", prop.location)
            payload = fallback_payload(prop, text, citations)

        return normalize_result(payload, prop, text=prose, citations=citations)
