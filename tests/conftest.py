"""Fixtures for testing the vllm_obs module."""
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock
import pytest
from openai.types.chat import ChatCompletion, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice
from openai.types.completion_usage import CompletionUsage
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from vllm_obs import Settings, TelemetryContext


TEST_MODEL = 'vllm-model-a'


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at hosts that are never contacted."""
    return Settings(
        openai_hostname='vllm.test',
        openai_api_key='test-key',
        otel_hostname='otel.test:4318',
        otel_api_key='otel-key',
        service_version='0.0.0-test',
    )


@pytest.fixture
def make_telemetry() -> Callable[..., TelemetryContext]:
    """Build TelemetryContexts exporting to in-memory exporters/readers; shut down afterwards."""
    contexts = []

    def _make(settings: Settings, **kwargs: dict) -> TelemetryContext:
        context = TelemetryContext(
            settings,
            span_exporter_factory=InMemorySpanExporter,
            metric_reader_factory=InMemoryMetricReader,
            **kwargs,
        )
        contexts.append(context)
        return context

    yield _make
    for context in contexts:
        context.shutdown()


@pytest.fixture
def telemetry(settings: Settings, make_telemetry: Callable) -> TelemetryContext:
    """A started TelemetryContext backed by in-memory exporters."""
    return make_telemetry(settings).start()


@pytest.fixture
def finished_spans(telemetry: TelemetryContext) -> Callable[[], list]:
    """Flush the batch processor and return the spans exported so far."""
    def _spans() -> list:
        telemetry.tracer_provider.force_flush()
        return list(telemetry.span_exporter.get_finished_spans())
    return _spans


@pytest.fixture
def get_metric() -> Callable:
    """Return the metric named `name` collected by `reader`, or None if nothing was recorded."""
    def _get(reader: InMemoryMetricReader, name: str) -> object | None:
        data = reader.get_metrics_data()
        if data is None:
            return None
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    if metric.name == name:
                        return metric
        return None
    return _get


@pytest.fixture
def make_completion() -> Callable[..., ChatCompletion]:
    """Build a ChatCompletion as returned by the openai client."""
    def _make(
            content: str = 'Arr, mighty deep!',
            usage: tuple[int, int, int] | None = (10, 5, 15),
            with_choice: bool = True,
            ) -> ChatCompletion:
        choices = []
        if with_choice:
            choices.append(Choice(
                index=0,
                finish_reason='stop',
                message=ChatCompletionMessage(role='assistant', content=content),
            ))
        completion_usage = None
        if usage is not None:
            completion_usage = CompletionUsage(
                prompt_tokens=usage[0],
                completion_tokens=usage[1],
                total_tokens=usage[2],
            )
        return ChatCompletion(
            id='chatcmpl-test',
            object='chat.completion',
            created=1700000000,
            model=TEST_MODEL,
            choices=choices,
            usage=completion_usage,
        )
    return _make


@pytest.fixture
def mock_openai_client() -> MagicMock:
    """AsyncOpenAI stand-in; set `chat.completions.create` per test."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def model_list_body() -> dict:
    return {
        'object': 'list',
        'data': [
            {
                'id': TEST_MODEL,
                'object': 'model',
                'created': 1700000000,
                'owned_by': 'local',
                'root': None,
                'parent': None,
            },
        ],
    }
