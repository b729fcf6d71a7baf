"""
Prometheus-style metrics endpoint.
"""
import time
from typing import Callable

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from pingchat.core import metrics as store
from pingchat.core.config import get_settings
from pingchat.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Metrics"])


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template rather than the raw path keeps ids out of the labels
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        store.record_request(
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration=duration,
        )
        return response


def generate_prometheus_metrics() -> str:
    """Generate Prometheus-format metrics output."""
    settings = get_settings()
    data = store.snapshot()
    lines = []

    lines.append("# HELP app_info Application information")
    lines.append("# TYPE app_info gauge")
    lines.append(f'app_info{{version="{settings.app_version}"}} 1')
    lines.append("")

    started = store.startup_time()
    if started:
        lines.append("# HELP app_start_time_seconds Unix timestamp when the app started")
        lines.append("# TYPE app_start_time_seconds gauge")
        lines.append(f"app_start_time_seconds {started:.3f}")
        lines.append("")

    lines.append("# HELP http_requests_total Total number of HTTP requests")
    lines.append("# TYPE http_requests_total counter")
    for (method, path, status), count in data["http_requests_total"].items():
        lines.append(f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}')
    lines.append("")

    lines.append("# HELP http_request_duration_seconds HTTP request duration in seconds")
    lines.append("# TYPE http_request_duration_seconds summary")
    for (method, path), durations in data["http_request_duration_seconds"].items():
        if durations:
            lines.append(f'http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {sum(durations):.6f}')
            lines.append(f'http_request_duration_seconds_count{{method="{method}",path="{path}"}} {len(durations)}')
    lines.append("")

    lines.append("# HELP pingchat_events_total Notification events emitted by the pipeline")
    lines.append("# TYPE pingchat_events_total counter")
    for kind, count in data["events_total"].items():
        lines.append(f'pingchat_events_total{{event="{kind}"}} {count}')

    return "\n".join(lines)


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns metrics in Prometheus exposition format.",
    response_class=Response,
)
async def metrics() -> Response:
    content = generate_prometheus_metrics()
    return Response(
        content=content,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
