"""OpenTelemetry trace and metric pipelines for vllm-obs."""
from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from contextlib import nullcontext
from typing import TYPE_CHECKING

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_NAMESPACE,
    SERVICE_VERSION,
    TELEMETRY_SDK_NAME,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from vllm_obs.errors import TelemetryInitError, TelemetryShutdownError
from vllm_obs.utilities import get_package_version

if TYPE_CHECKING:
    from vllm_obs.config import Settings

logger = logging.getLogger(__name__)

TRACER_NAME = 'vllm-client-tracer'
METER_NAME = 'vllm-client-meter'

LATENCY_HISTOGRAM_NAME = 'openai.api.latency'
SUCCESS_COUNTER_NAME = 'openai.api.success_total'
LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0)
METRIC_EXPORT_INTERVAL_MILLIS = 1000

_GLOBAL_LOCK = threading.Lock()
_global_installed = False


def is_telemetry_enabled() -> bool:
    """
    Check if telemetry export is enabled.

    Follows the OpenTelemetry convention: `OTEL_SDK_DISABLED=true` switches it off. Unlike the
    SDK default for libraries, telemetry is on unless explicitly disabled since exporting it is the
    point of this tool.
    """
    disabled = os.getenv('OTEL_SDK_DISABLED', 'false').strip().lower()
    return disabled not in ('true', '1', 'yes')


class MetricInstruments:
    """
    The latency histogram and success counter shared by every chat call.

    Instruments are bound to the meter provider that created them, so a new set must be created
    for each provider. `meter_provider` is kept to make that binding checkable.
    """

    def __init__(self, meter_provider: MeterProvider, latency_histogram, success_counter):  # noqa: ANN001
        self.meter_provider = meter_provider
        self.latency_histogram = latency_histogram
        self.success_counter = success_counter

    @classmethod
    def create(cls, meter_provider: MeterProvider) -> MetricInstruments:
        """Create both instruments on `meter_provider`."""
        meter = meter_provider.get_meter(METER_NAME, get_package_version())
        latency_histogram = meter.create_histogram(
            name=LATENCY_HISTOGRAM_NAME,
            unit='s',
            description='Latency of OpenAI API calls in seconds',
        )
        success_counter = meter.create_counter(
            name=SUCCESS_COUNTER_NAME,
            description='Total number of successful OpenAI API calls',
        )
        return cls(meter_provider, latency_histogram, success_counter)

    def is_bound_to(self, meter_provider: MeterProvider | None) -> bool:
        """True if these instruments were created by `meter_provider`."""
        return meter_provider is not None and self.meter_provider is meter_provider


class TelemetryContext:
    """
    Owns the trace and metric export pipelines and their lifecycle.

    The context is meant to be created once at process start and handed to every
    `InstrumentedChat`; it can also be scoped to a single call (see `instrumented_chat`). Use it
    as a context manager so the pipelines are always flushed:

    ```python
    with TelemetryContext(settings) as telemetry:
        chat = InstrumentedChat(telemetry, settings)
        chat.chat(model, role, message)
    ```

    Args:
        settings:
            Endpoint, credentials and resource identity.
        span_exporter_factory:
            Builds the span exporter on each `start()`. Defaults to an OTLP/HTTP exporter sending
            to `settings.traces_endpoint`.
        metric_reader_factory:
            Builds the metric reader on each `start()`. Defaults to a periodic reader (1 second)
            wrapping an OTLP/HTTP exporter sending to `settings.metrics_endpoint`.
        install_global:
            Install the providers as the process-wide defaults. Only the first installation in a
            process takes effect.
    """

    def __init__(
            self,
            settings: Settings,
            *,
            span_exporter_factory: Callable[[], SpanExporter] | None = None,
            metric_reader_factory: Callable[[], MetricReader] | None = None,
            install_global: bool = False,
            ) -> None:
        self.settings = settings
        self.enabled = settings.telemetry_enabled
        self.install_global = install_global
        self._span_exporter_factory = span_exporter_factory or self._otlp_span_exporter
        self._metric_reader_factory = metric_reader_factory or self._otlp_metric_reader
        self._lock = threading.Lock()
        self._started = False
        self._tracer = None
        self._instruments: MetricInstruments | None = None
        self.span_exporter: SpanExporter | None = None
        self.metric_reader: MetricReader | None = None
        self.tracer_provider: TracerProvider | None = None
        self.meter_provider: MeterProvider | None = None

    @property
    def started(self) -> bool:
        """True between `start()` and `shutdown()`."""
        return self._started

    @property
    def tracer(self):  # noqa: ANN201
        """Tracer of the active provider, or None when telemetry is disabled."""
        if not self._started:
            raise TelemetryInitError("Telemetry has not been started.")
        return self._tracer

    @property
    def instruments(self) -> MetricInstruments | None:
        """Instruments of the active meter provider, or None when telemetry is disabled."""
        if not self._started:
            raise TelemetryInitError("Telemetry has not been started.")
        return self._instruments

    def build_resource(self) -> Resource:
        """Resource attributes shared by both pipelines."""
        return Resource.create({
            SERVICE_NAME: self.settings.service_name,
            SERVICE_VERSION: self.settings.service_version,
            SERVICE_NAMESPACE: self.settings.service_namespace,
            DEPLOYMENT_ENVIRONMENT: self.settings.deployment_environment,
            'environment': self.settings.deployment_environment,
            TELEMETRY_SDK_NAME: self.settings.telemetry_sdk_name,
        })

    def start(self) -> TelemetryContext:
        """
        Build both pipelines and create the metric instruments. Calling `start()` on a started
        context is a no-op.

        Raises:
            TelemetryInitError: If an exporter, reader or provider cannot be constructed.
        """
        with self._lock:
            if self._started:
                return self
            if not self.enabled:
                logger.info("Telemetry disabled via OTEL_SDK_DISABLED; nothing will be exported.")
                self._started = True
                return self

            resource = self.build_resource()
            try:
                span_exporter = self._span_exporter_factory()
                tracer_provider = TracerProvider(resource=resource)
                tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
            except Exception as e:
                raise TelemetryInitError(f"failed to initialize trace provider: {e}") from e

            try:
                metric_reader = self._metric_reader_factory()
                meter_provider = MeterProvider(
                    resource=resource,
                    metric_readers=[metric_reader],
                    views=[
                        View(
                            instrument_name=LATENCY_HISTOGRAM_NAME,
                            aggregation=ExplicitBucketHistogramAggregation(
                                boundaries=LATENCY_BUCKETS,
                            ),
                        ),
                    ],
                )
                instruments = MetricInstruments.create(meter_provider)
            except Exception as e:
                tracer_provider.shutdown()
                raise TelemetryInitError(f"failed to initialize metrics provider: {e}") from e

            if self.install_global:
                _install_global(tracer_provider, meter_provider)

            self.span_exporter = span_exporter
            self.metric_reader = metric_reader
            self.tracer_provider = tracer_provider
            self.meter_provider = meter_provider
            self._tracer = tracer_provider.get_tracer(TRACER_NAME, get_package_version())
            self._instruments = instruments
            self._started = True
            logger.debug(
                "Telemetry started (traces=%s, metrics=%s)",
                self.settings.traces_endpoint, self.settings.metrics_endpoint,
            )
        return self

    def force_flush(self) -> bool:
        """Export everything buffered so far without shutting down."""
        with self._lock:
            flushed = True
            if self.tracer_provider is not None:
                flushed = self.tracer_provider.force_flush() and flushed
            if self.meter_provider is not None:
                flushed = self.meter_provider.force_flush() and flushed
            return flushed

    def shutdown(self) -> None:
        """
        Flush and close both providers. Both are always attempted; every failure is reported.

        Raises:
            TelemetryShutdownError: If flushing or closing either provider failed.
        """
        failures = []
        with self._lock:
            if not self._started:
                return
            if self.tracer_provider is not None:
                try:
                    if not self.tracer_provider.force_flush():
                        failures.append("tracer provider: flush timed out")
                    self.tracer_provider.shutdown()
                except Exception as e:
                    failures.append(f"tracer provider: {e}")
            if self.meter_provider is not None:
                try:
                    if not self.meter_provider.force_flush():
                        failures.append("meter provider: flush timed out")
                    self.meter_provider.shutdown()
                except Exception as e:
                    failures.append(f"meter provider: {e}")

            self.tracer_provider = None
            self.meter_provider = None
            self._tracer = None
            self._instruments = None
            self._started = False
        if failures:
            raise TelemetryShutdownError(failures)
        logger.debug("Telemetry shut down")

    def __enter__(self) -> TelemetryContext:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: ANN001
        try:
            self.shutdown()
        except TelemetryShutdownError as shutdown_error:
            if exc is None:
                raise
            # the body's exception takes precedence
            logger.warning("%s (while handling %s: %s)", shutdown_error, exc_type.__name__, exc)
        return False

    def _otlp_span_exporter(self) -> SpanExporter:
        return OTLPSpanExporter(
            endpoint=self.settings.traces_endpoint,
            headers=self._export_headers(),
        )

    def _otlp_metric_reader(self) -> MetricReader:
        exporter = OTLPMetricExporter(
            endpoint=self.settings.metrics_endpoint,
            headers=self._export_headers(),
        )
        return PeriodicExportingMetricReader(
            exporter=exporter,
            export_interval_millis=METRIC_EXPORT_INTERVAL_MILLIS,
        )

    def _export_headers(self) -> dict[str, str]:
        # e.g. OTEL_EXPORTER_OTLP_HEADERS="x-tenant=team-a,x-custom-header=value"
        return {
            **self.settings.otel_headers,
            **_parse_headers(os.getenv('OTEL_EXPORTER_OTLP_HEADERS', '')),
        }


def _install_global(tracer_provider: TracerProvider, meter_provider: MeterProvider) -> bool:
    """Install providers as the process-wide defaults; only the first call has an effect."""
    global _global_installed  # noqa: PLW0603
    with _GLOBAL_LOCK:
        if _global_installed:
            logger.warning("Process-wide telemetry providers are already installed; keeping them.")
            return False
        trace.set_tracer_provider(tracer_provider)
        metrics.set_meter_provider(meter_provider)
        _global_installed = True
        return True


def _parse_headers(header_string: str) -> dict[str, str]:
    """Parse OTEL_EXPORTER_OTLP_HEADERS format."""
    if not header_string:
        return {}

    headers = {}
    for item in header_string.split(","):
        if "=" in item:
            key, value = item.split("=", 1)
            headers[key.strip()] = value.strip()
    return headers


def extract_current_trace_context() -> tuple[str | None, str | None]:
    """
    Extract trace and span IDs from the current active span.

    Returns:
        Tuple of (trace_id, span_id) as hexadecimal strings, or (None, None) if there is no
        recording span.
    """
    current_span = trace.get_current_span()
    if not current_span or not current_span.is_recording():
        return None, None

    span_context = current_span.get_span_context()
    if not span_context or not span_context.is_valid:
        return None, None

    trace_id = format(span_context.trace_id, '032x')
    span_id = format(span_context.span_id, '016x')
    return trace_id, span_id


def safe_span(tracer: object | None, name: str, **kwargs: dict) -> object:
    """
    Create span safely, returning nullcontext if tracer unavailable.

    Args:
        tracer: OpenTelemetry tracer or None
        name: Span name
        **kwargs: Additional span arguments

    Returns:
        Span context manager or nullcontext
    """
    if tracer:
        return tracer.start_as_current_span(name, **kwargs)
    return nullcontext()
