import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Define metrics (names follow Prometheus conventions)
REQ_COUNT = Counter("http_requests_total", "Total HTTP requests", ["path","method","code"])
REQ_LATENCY = Histogram("http_request_duration_seconds", "Request latency", ["path","method"])

# Domain metrics
PROVIDER_LATENCY = Histogram(
    "landiq_provider_latency_seconds", "Latency of calls to the model provider", ["operation"]
)
VALUATION_FALLBACKS = Counter(
    "landiq_valuation_fallbacks_total", "Valuations built from default figures because no structured output was found"
)
AGENT_TOOL_CALLS = Counter("landiq_agent_tool_calls_total", "Tool invocations requested by the agent", ["tool"])

class PromMiddleware(BaseHTTPMiddleware):
    """
    Measures latency and counts requests.
    """
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Route template (/api/valuations/{valuation_id}) keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        method = request.method
        code = str(response.status_code)

        REQ_COUNT.labels(path=path, method=method, code=code).inc()
        REQ_LATENCY.labels(path=path, method=method).observe(elapsed)
        return response

async def metrics_endpoint(request: Request):
    """
    GET /api/metrics, scraped by Prometheus.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
