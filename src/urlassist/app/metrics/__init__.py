"""Prometheus metrics module."""

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response


def get_metrics_response() -> Response:
    """Render the default registry in Prometheus text format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
