import json
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
# "p50": 8,500  ->  "p50": 8500   (only numbers sitting in value position)
_GROUPED_NUMBER = re.compile(r"(:\s*)(-?\d{1,3}(?:,\d{3})+(?:\.\d+)?)(?=\s*[,}\]\r\n])")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_FENCE_MARKER = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_NOTE = re.compile(r"(?:\n|(?<=[.!?])[ \t]+)\s*[*_]*Note:.*\Z", re.DOTALL | re.IGNORECASE)

def utc_now_iso() -> str:
    """Current instant as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()

def repair_json(text: str) -> str:
    """
    Fix the formatting slips models make most often:
    - thousands separators inside numbers ("8,500")
    - trailing commas before a closing brace/bracket
    """
    text = _GROUPED_NUMBER.sub(lambda m: m.group(1) + m.group(2).replace(",", ""), text)
    return _TRAILING_COMMA.sub(r"\1", text)

def extract_json_object(text: str | None) -> dict | None:
    """
    Find a JSON object embedded in free text, fenced or bare.
    Returns None when nothing parseable is found.
    """
    if not text:
        return None
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidate = fenced.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        candidate = text[start:end + 1]

    for attempt in (candidate, repair_json(candidate)):
        try:
            data = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None

def remove_json_object(text: str | None) -> str:
    """The prose around an embedded JSON object."""
    if not text:
        return ""
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return (text[:fenced.start()] + text[fenced.end():]).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return text
    return (text[:start] + text[end + 1:]).strip()

def clean_narrative(text: str | None) -> str:
    """Drop residual code-fence markers and a trailing "Note:" annotation."""
    if not text:
        return ""
    text = _FENCE_MARKER.sub("", text)
    text = _TRAILING_NOTE.sub("", text)
    return text.strip()

def to_number(value: Any) -> float | None:
    """Coerce model output like 8500, "8500", "$8,500" to a float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None

def decimal_text(value: float) -> str:
    """Render a number as plain decimal text without float noise: 80.0 -> "80"."""
    try:
        d = Decimal(repr(value)).normalize()
    except InvalidOperation:
        return str(value)
    return format(d, "f")

def url_host(url: str) -> str:
    try:
        return httpx.URL(url).host or url
    except (httpx.InvalidURL, TypeError):
        return url
