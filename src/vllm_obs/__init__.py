"""Public facing functions and classes."""
from vllm_obs.config import Settings
from vllm_obs.errors import (
    VllmObsError,
    ConfigMissing,
    TransportError,
    HTTPStatusError,
    DecodeError,
    EmptyModelList,
    TelemetryInitError,
    TelemetryShutdownError,
    CompletionError,
    EmptyCompletionError,
)
from vllm_obs.models_base import (
    ModelDescriptor,
    ModelList,
    ChatRequest,
    ChatResult,
    TraceContext,
    system_message,
    user_message,
)
from vllm_obs.model_directory import discover_default_model, list_models
from vllm_obs.telemetry import (
    MetricInstruments,
    TelemetryContext,
    is_telemetry_enabled,
)
from vllm_obs.openai import InstrumentedChat, instrumented_chat


__all__ = [  # noqa: RUF022
    'Settings',
    'VllmObsError',
    'ConfigMissing',
    'TransportError',
    'HTTPStatusError',
    'DecodeError',
    'EmptyModelList',
    'TelemetryInitError',
    'TelemetryShutdownError',
    'CompletionError',
    'EmptyCompletionError',
    'ModelDescriptor',
    'ModelList',
    'ChatRequest',
    'ChatResult',
    'TraceContext',
    'system_message',
    'user_message',
    'discover_default_model',
    'list_models',
    'MetricInstruments',
    'TelemetryContext',
    'is_telemetry_enabled',
    'InstrumentedChat',
    'instrumented_chat',
]
