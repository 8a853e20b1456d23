import os
import re
from typing import Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

REDACTED = "[REDACTED]"

# Attribute keys that are dropped regardless of value
SENSITIVE_ATTRIBUTES = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "rotation.client_request_token",
})

SENSITIVE_ATTRIBUTE_PATTERNS = (
    re.compile(r"http\.(request|response)\.header\..*", re.IGNORECASE),
    re.compile(r".*(password|token|secret_string|master_key|auth_master_key).*", re.IGNORECASE),
)


def is_sensitive_attribute(key: str) -> bool:
    key = key.lower()
    return key in SENSITIVE_ATTRIBUTES or any(p.match(key) for p in SENSITIVE_ATTRIBUTE_PATTERNS)


class RedactingSpanProcessor(SpanProcessor):
    """Wraps an exporting processor and masks credential-bearing span attributes.

    Rotation spans carry secret ids and step names; request tokens, generated
    passwords and auth headers from instrumented HTTP clients are masked before
    the span reaches the wrapped processor.
    """

    def __init__(self, processor: SpanProcessor):
        self._processor = processor

    def on_start(self, span: Span, parent_context: Optional[Context] = None) -> None:
        self._processor.on_start(span, parent_context)

    def on_end(self, span: ReadableSpan) -> None:
        attributes = span.attributes or {}
        if any(is_sensitive_attribute(key) for key in attributes):
            # ReadableSpan has no public setter; exporters read _attributes
            span._attributes = {
                key: REDACTED if is_sensitive_attribute(key) else value
                for key, value in attributes.items()
            }
        self._processor.on_end(span)

    def shutdown(self) -> None:
        self._processor.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._processor.force_flush(timeout_millis)


def setup_tracing(otlp_endpoint: Optional[str] = None, dev_mode: bool = False) -> Optional[TracerProvider]:
    """Install a global tracer provider exporting through RedactingSpanProcessor.

    OTLP (gRPC) when an endpoint is configured, console output in dev mode,
    otherwise tracing stays disabled and None is returned.
    """
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
    elif dev_mode:
        exporter = ConsoleSpanExporter()
    else:
        return None

    provider = TracerProvider()
    provider.add_span_processor(RedactingSpanProcessor(BatchSpanProcessor(exporter)))
    trace.set_tracer_provider(provider)
    return provider
