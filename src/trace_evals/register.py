"""OTEL pipeline setup for evaluation tracing.

The register() function is the single entry point for configuring the
tracer that evaluation runs record spans with. It creates a
TracerProvider, picks an OTLP exporter, and optionally installs the
provider globally.

Supports both HTTP and gRPC OTLP protocols:
  - http:// or https:// → HTTP exporter
  - grpc:// → gRPC (insecure)
  - grpcs:// → gRPC (TLS)
  - Or set protocol="http" / protocol="grpc" explicitly
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Literal, Optional
from urllib.parse import urlparse

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:4318/v1/traces"


def register(
    *,
    endpoint: Optional[str] = None,
    protocol: Optional[Literal["http", "grpc"]] = None,
    project_name: Optional[str] = None,
    batch: bool = True,
    exporter: Optional[SpanExporter] = None,
    set_global: bool = True,
    headers: Optional[Dict[str, str]] = None,
) -> TracerProvider:
    """Configure the OTEL tracing pipeline used by evaluation runs.

    Args:
        endpoint: OTLP endpoint URL. Defaults to the TRACE_EVALS_OTEL_ENDPOINT
            env var or http://localhost:4318/v1/traces.
        protocol: Force "http" or "grpc". If None, inferred from URL scheme.
        project_name: Service name attached to all spans. Defaults to the
            TRACE_EVALS_PROJECT env var or "default".
        batch: Use BatchSpanProcessor (True) or SimpleSpanProcessor (False).
        exporter: Custom SpanExporter. Overrides endpoint/protocol/headers.
        set_global: Set as the global TracerProvider (default: True).
        headers: Additional headers for the exporter.

    Returns:
        The configured TracerProvider. Its force_flush() is what evaluation
        runs call before scorers query their trace.

    Examples:
        # Local collector over HTTP
        register()

        # gRPC via URL scheme
        register(endpoint="grpc://localhost:4317")

        # In-process exporter for tests
        register(exporter=InMemorySpanExporter(), batch=False)
    """
    endpoint = endpoint or os.environ.get("TRACE_EVALS_OTEL_ENDPOINT", DEFAULT_ENDPOINT)
    name = project_name or os.environ.get("TRACE_EVALS_PROJECT", "default")

    resource = Resource.create({"service.name": name})
    provider = TracerProvider(resource=resource)

    if exporter is None:
        exporter = _create_exporter(endpoint=endpoint, protocol=protocol, headers=headers)

    if batch:
        processor = BatchSpanProcessor(exporter)
    else:
        processor = SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)

    if set_global:
        trace.set_tracer_provider(provider)

    logger.info("Evaluation tracing initialized: endpoint=%s project=%s", endpoint, name)

    return provider


def _infer_protocol(endpoint: str, protocol: Optional[str]) -> str:
    """Determine the OTLP transport protocol from explicit setting or URL scheme."""
    if protocol:
        return protocol

    scheme = urlparse(endpoint).scheme.lower()
    if scheme in ("grpc", "grpcs"):
        return "grpc"

    # Default to HTTP for http://, https://, or anything else
    return "http"


def _create_exporter(
    endpoint: str,
    protocol: Optional[str],
    headers: Optional[Dict[str, str]],
) -> SpanExporter:
    if _infer_protocol(endpoint, protocol) == "grpc":
        return _create_grpc_exporter(endpoint, headers)
    return _create_http_exporter(endpoint, headers)


def _create_http_exporter(endpoint: str, headers: Optional[Dict[str, str]]) -> SpanExporter:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    logger.info("Using HTTP exporter: %s", endpoint)
    return OTLPSpanExporter(endpoint=endpoint, headers=headers)


def _create_grpc_exporter(endpoint: str, headers: Optional[Dict[str, str]]) -> SpanExporter:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter as GRPCSpanExporter,
        )
    except ImportError:
        raise ImportError(
            "opentelemetry-exporter-otlp-proto-grpc is required for gRPC export. "
            "Install it with: pip install trace-evals[grpc]"
        )

    parsed = urlparse(endpoint)
    scheme = parsed.scheme.lower()

    # gRPC exporter takes host:port, not a full URL
    grpc_endpoint = parsed.netloc or endpoint
    insecure = scheme not in ("grpcs", "https")

    logger.info("Using gRPC exporter: %s (insecure=%s)", grpc_endpoint, insecure)
    return GRPCSpanExporter(
        endpoint=grpc_endpoint,
        insecure=insecure,
        headers=headers,
    )
