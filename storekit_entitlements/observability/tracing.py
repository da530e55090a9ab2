"""
Distributed Tracing with OpenTelemetry.

One span per purchase, restore, pushed transaction and reconciliation
pass. Spans are named ``storekit.<operation>`` and nest, so a purchase
span contains the reconciliation pass it triggered.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from storekit_entitlements.config import Settings, settings

SPAN_PREFIX = "storekit"
_TRACER_NAME = "storekit_entitlements"


def setup_tracing(config: Settings = settings) -> bool:
    """
    Install an OTLP-exporting tracer provider.

    Returns:
        False when tracing is disabled; the global no-op tracer stays in place
    """
    if not config.tracing_enabled:
        return False

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": config.service_name,
                "service.version": config.api_version,
                "storekit.bundle_id": config.bundle_id,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=config.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)
    return True


def instrument_fastapi(app: Any, config: Settings = settings) -> None:
    """Auto-instrument the HTTP adapter. Call after the app is created."""
    if config.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def get_tracer() -> Tracer:
    return trace.get_tracer(_TRACER_NAME)


def _attribute_value(value: Any) -> str | int | float | bool:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class trace_operation:
    """
    Span around one entitlement operation.

    Attributes passed as keywords are prefixed with ``storekit.``; None
    values are dropped. An exception escaping the block marks the span as
    an error. ``set_outcome`` tags how a flow ended without raising.

    Usage:
        with trace_operation("purchase", product_id=product.product_id) as op:
            result = await self._purchase(product)
            op.set_outcome(result.status)
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.span_name = f"{SPAN_PREFIX}.{operation_name}"
        self.attributes = attributes
        self._span_cm: Any = None
        self.span: Span = trace.INVALID_SPAN

    def __enter__(self) -> "trace_operation":
        self._span_cm = get_tracer().start_as_current_span(
            self.span_name, record_exception=False, set_status_on_exception=False
        )
        self.span = self._span_cm.__enter__()
        self.set_attributes(**self.attributes)
        return self

    def set_attributes(self, **attributes: Any) -> None:
        for key, value in attributes.items():
            if value is not None:
                self.span.set_attribute(f"{SPAN_PREFIX}.{key}", _attribute_value(value))

    def set_outcome(self, outcome: str) -> None:
        self.span.set_attribute(f"{SPAN_PREFIX}.outcome", outcome)

    def __exit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> None:
        if exc_val is not None:
            self.span.set_status(Status(StatusCode.ERROR, str(exc_val)))
            self.span.record_exception(exc_val)
        self._span_cm.__exit__(exc_type, exc_val, exc_tb)
