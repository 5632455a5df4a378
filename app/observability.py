import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
)

DOCUMENTS_ISSUED = Counter("documents_issued_total", "Document versions issued")
VERSIONS_CREATED = Counter("document_versions_created_total", "Draft versions created")
ACTIONS_CLOSED = Counter("actions_closed_total", "Action rows closed by lineage closure")
RECOMMENDATIONS_CREATED = Counter(
    "recommendations_created_total", "Auto-recommendations created"
)
DEFENCE_PACKS_BUILT = Counter("defence_packs_built_total", "Defence packs built")
WRITE_CONFLICTS = Counter(
    "write_conflicts_total", "Writes rejected by a family-level constraint", ["operation"]
)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", None) or "unmatched"
            REQUEST_COUNT.labels(request.method, path, str(status)).inc()
            REQUEST_LATENCY.labels(request.method, path).observe(
                time.perf_counter() - start
            )
