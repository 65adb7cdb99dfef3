"""Chat-style valuation assistant.

Each turn sends the whole transcript to the chat model with two tools. If
the model asks for tools, they run in order, their results are appended,
and one more round-trip produces the final reply.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Tuple

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..core.config import settings
from ..core.errors import ValidationError, ValuationGenerationError
from ..core.metrics import AGENT_TOOL_CALLS, PROVIDER_LATENCY
from ..data.base import SessionStore, Transcript
from ..models.base import ValuationProvider
from ..schemas import parse_property_input

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful land valuation assistant."

ADJUSTABLE_FIELDS = ("p10", "p50", "p90", "totalValue", "pricePerAcre")

AGENT_TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "generateLandValuation",
            "description": "Generate a land valuation for the given property",
            "parameters": {
                "type": "object",
                "properties": {
                    "propertyDescription": {"type": "string"},
                    "acreage": {"type": "number"},
                    "location": {"type": "string"},
                    "irrigated": {"type": "boolean"},
                    "tillable": {"type": "boolean"},
                    "cropType": {"type": "string"},
                },
                "required": ["propertyDescription", "acreage", "location", "irrigated", "tillable"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "adjustValuation",
            "description": "Adjust an existing valuation by a factor",
            "parameters": {
                "type": "object",
                "properties": {
                    "valuation": {"type": "object"},
                    "factor": {"type": "number"},
                },
                "required": ["valuation", "factor"],
            },
        },
    },
]


def adjust_valuation(valuation: Dict[str, Any], factor: float) -> Dict[str, Any]:
    """Scale the five money figures by `factor`, rounded; everything else is kept."""
    adjusted = dict(valuation)
    for key in ADJUSTABLE_FIELDS:
        if key in valuation and valuation[key] is not None:
            adjusted[key] = round(float(valuation[key]) * factor)
    return adjusted


def _assistant_message(message: Any) -> Dict[str, Any]:
    """SDK message -> plain dict that can be stored and sent back."""
    out: Dict[str, Any] = {"role": "assistant", "content": getattr(message, "content", None)}
    calls = getattr(message, "tool_calls", None) or []
    if calls:
        out["tool_calls"] = [
            {
                "id": c.id,
                "type": "function",
                "function": {"name": c.function.name, "arguments": c.function.arguments or "{}"},
            }
            for c in calls
        ]
    return out


class AgentService:
    def __init__(
        self,
        client: AsyncOpenAI,
        provider: ValuationProvider,
        sessions: SessionStore,
        model: str | None = None,
    ):
        self.client = client
        self.provider = provider
        self.sessions = sessions
        self.model = model or settings.AGENT_MODEL

    async def handle_message(self, message: str, session_id: str | None = None) -> Tuple[str, str]:
        """Run one conversational turn. Returns (session_id, assistant reply)."""
        session_id = session_id or str(uuid.uuid4())
        messages: Transcript = await self.sessions.get(session_id) or [
            {"role": "system", "content": SYSTEM_PROMPT}
        ]
        messages.append({"role": "user", "content": message})

        reply = await self._complete(messages, tools=AGENT_TOOLS)
        assistant = _assistant_message(reply)
        messages.append(assistant)

        if assistant.get("tool_calls"):
            for call in assistant["tool_calls"]:
                result = await self._run_tool(call["function"]["name"], call["function"]["arguments"])
                messages.append({"role": "tool", "tool_call_id": call["id"], "content": json.dumps(result)})
            reply = await self._complete(messages)
            messages.append(_assistant_message(reply))

        await self.sessions.put(session_id, messages)
        return session_id, messages[-1].get("content") or ""

    async def _complete(self, messages: Transcript, tools: List[Dict[str, Any]] | None = None) -> Any:
        kwargs: Dict[str, Any] = {"model": self.model, "messages": messages}
        if tools:
            kwargs["tools"] = tools
        start = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except (OpenAIError, httpx.HTTPError) as exc:
            logger.error("Agent completion failed: %s", exc)
            raise ValuationGenerationError(f"Agent request failed: {exc}") from exc
        finally:
            PROVIDER_LATENCY.labels(operation="agent").observe(time.perf_counter() - start)
        return completion.choices[0].message

    async def _run_tool(self, name: str, arguments: str) -> Dict[str, Any]:
        AGENT_TOOL_CALLS.labels(tool=name).inc()
        try:
            args = json.loads(arguments or "{}")
        except json.JSONDecodeError:
            return {"error": f"Arguments for {name} are not valid JSON"}
        if not isinstance(args, dict):
            return {"error": f"Arguments for {name} must be an object"}
        logger.info("Agent tool call %s", name)

        if name == "generateLandValuation":
            try:
                prop = parse_property_input(args)
            except ValidationError as exc:
                return {"error": exc.message, "errors": exc.errors}
            result = await self.provider.produce_valuation(prop)
            return result.model_dump(by_alias=True, exclude_none=True)

        if name == "adjustValuation":
            valuation = args.get("valuation")
            try:
                factor = float(args.get("factor"))
            except (TypeError, ValueError):
                return {"error": "factor must be a number"}
            if not isinstance(valuation, dict):
                return {"error": "valuation must be an object"}
            try:
                return adjust_valuation(valuation, factor)
            except (TypeError, ValueError):
                return {"error": "valuation figures must be numbers"}

        return {"error": f"Unknown tool {name}"}
