"""Instrumented chat completions against an OpenAI-compatible (e.g. vLLM) endpoint."""
import asyncio
import logging
from time import perf_counter
import httpx
import openai
from openai import AsyncOpenAI, DefaultAsyncHttpxClient
from opentelemetry import propagate
from opentelemetry.trace import SpanKind, Status, StatusCode
from vllm_obs.config import Settings
from vllm_obs.errors import CompletionError, EmptyCompletionError, TelemetryShutdownError
from vllm_obs.models_base import ChatRequest, ChatResult, TraceContext
from vllm_obs.telemetry import TelemetryContext, extract_current_trace_context, safe_span
from vllm_obs.utilities import run_sync

logger = logging.getLogger(__name__)

SPAN_NAME = 'vllm-client-session'


class InstrumentedChat:
    """
    Sends one chat completion per call and reports it to telemetry.

    Each call runs inside a CLIENT span carrying the request attributes; the span context is
    propagated to the inference server through W3C `traceparent` headers. Successful calls
    increment the success counter and record latency on the instruments of `telemetry`.

    Args:
        telemetry:
            A started `TelemetryContext`; its tracer and instruments are used for every call.
        settings:
            Endpoint and credentials. Defaults to `telemetry.settings`.
        client:
            An `AsyncOpenAI` client to use instead of building one from `settings`.
    """

    def __init__(
            self,
            telemetry: TelemetryContext,
            settings: Settings | None = None,
            *,
            client: AsyncOpenAI | None = None,
            ) -> None:
        self.telemetry = telemetry
        self.settings = settings or telemetry.settings
        self._owns_client = client is None
        self.client = client or self._build_client()

    def _build_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            base_url=self.settings.inference_base_url,
            api_key=self.settings.openai_api_key,
            timeout=self.settings.request_timeout,
            max_retries=0,
            http_client=DefaultAsyncHttpxClient(
                verify=not self.settings.allow_insecure_tls,
                timeout=self.settings.request_timeout,
            ),
        )

    def _request_attributes(self, request: ChatRequest) -> dict:
        return {
            'service.namespace': self.settings.service_namespace,
            'ai.model': request.model,
            'user.input': request.user_message,
            'ai.request.role': request.system_role,
            'ai.request.message.length': len(request.user_message),
            'telemetry.sdk.name': self.settings.telemetry_sdk_name,
        }

    def _metric_labels(self, model: str) -> dict:
        return {
            'api.status': 'success',
            'api.target': 'chat_completion',
            'openai.model': model,
            'telemetry.sdk.name': self.settings.telemetry_sdk_name,
        }

    async def run_async(self, request: ChatRequest) -> ChatResult:  # noqa: PLR0912
        """
        Send `request` and return the first choice along with usage and trace context.

        Cancelling the awaiting task aborts the request; the span is still closed (status ERROR,
        `ai.request.cancelled=True`) and `asyncio.CancelledError` propagates.

        Raises:
            CompletionError: The request failed (transport or API error).
            EmptyCompletionError: The request succeeded but returned no choices.
        """
        tracer = self.telemetry.tracer
        instruments = self.telemetry.instruments
        with safe_span(
            tracer,
            SPAN_NAME,
            kind=SpanKind.CLIENT,
            attributes=self._request_attributes(request),
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            headers = {}
            propagate.inject(headers)

            start_time = perf_counter()
            try:
                response = await self.client.chat.completions.create(
                    model=request.model,
                    messages=request.messages(),
                    extra_headers=headers or None,
                )
            except asyncio.CancelledError:
                if span:
                    span.set_attribute('ai.request.cancelled', True)
                    span.set_status(Status(StatusCode.ERROR, description='cancelled'))
                logger.info("Chat completion for `%s` cancelled", request.model)
                raise
            except (openai.OpenAIError, httpx.HTTPError) as e:
                latency = perf_counter() - start_time
                if span:
                    span.set_status(Status(StatusCode.ERROR, description='ChatCompletion error'))
                    span.record_exception(e)
                logger.warning(
                    "ChatCompletion error for `%s` after %.3fs: %s", request.model, latency, e,
                )
                raise CompletionError(request.model, str(e)) from e
            except Exception as e:
                if span:
                    span.set_status(Status(StatusCode.ERROR, description=str(e)))
                    span.record_exception(e)
                raise
            latency = perf_counter() - start_time

            if not response.choices:
                if span:
                    span.set_status(Status(StatusCode.ERROR, description='No response received'))
                logger.warning("No response received from `%s`", request.model)
                raise EmptyCompletionError(request.model)

            if instruments:
                labels = self._metric_labels(request.model)
                instruments.success_counter.add(1, labels)
                instruments.latency_histogram.record(latency, labels)

            text = response.choices[0].message.content or ''
            usage = response.usage
            if span:
                if usage and usage.total_tokens > 0:
                    span.set_attributes({
                        'assistant.response': text,
                        'ai.usage.prompt_tokens': usage.prompt_tokens,
                        'ai.usage.completion_tokens': usage.completion_tokens,
                        'ai.usage.total_tokens': usage.total_tokens,
                    })
                span.set_status(Status(StatusCode.OK))

            trace_id, span_id = extract_current_trace_context()
            trace_context = None
            if trace_id and span_id:
                trace_context = TraceContext(trace_id=trace_id, span_id=span_id)
            return ChatResult(
                text=text,
                prompt_tokens=usage.prompt_tokens if usage else None,
                completion_tokens=usage.completion_tokens if usage else None,
                total_tokens=usage.total_tokens if usage else None,
                duration_seconds=latency,
                trace_context=trace_context,
            )

    async def chat_async(self, model: str, role: str, message: str) -> str:
        """Send `message` with system instruction `role` to `model` and return the reply text."""
        result = await self.run_async(
            ChatRequest(model=model, system_role=role, user_message=message),
        )
        return result.text

    def chat(self, model: str, role: str, message: str) -> str:
        """
        Synchronous version of `chat_async`.

        Every call may run on a fresh event loop, and pooled connections cannot outlive the loop
        that opened them. Unless a client was passed in, each call therefore uses its own client,
        closed before returning.
        """
        async def _chat_once() -> str:
            if not self._owns_client:
                return await self.chat_async(model, role, message)
            per_call = InstrumentedChat(self.telemetry, self.settings, client=self._build_client())
            try:
                return await per_call.chat_async(model, role, message)
            finally:
                await per_call.aclose()

        return run_sync(_chat_once)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()


def instrumented_chat(
        model: str,
        role: str,
        message: str,
        settings: Settings | None = None,
        ) -> str:
    """
    Run one chat completion inside its own telemetry pipeline, which is flushed and shut down
    before returning.

    Prefer a long-lived `TelemetryContext` with `InstrumentedChat` when sending more than one
    request; this function pays the exporter setup and teardown on every call.

    Raises:
        CompletionError, EmptyCompletionError: see `InstrumentedChat.run_async`.
        TelemetryInitError: The pipelines could not be built.
        TelemetryShutdownError: Flushing failed after a successful call; the reply is available
            as `result` on the exception. A shutdown failure after a failed call is only logged
            and the call's own error is raised.
    """
    settings = settings or Settings.from_env()
    reply = None
    try:
        with TelemetryContext(settings) as telemetry:
            async def _chat_once() -> str:
                chat = InstrumentedChat(telemetry, settings)
                try:
                    return await chat.chat_async(model, role, message)
                finally:
                    await chat.aclose()

            reply = run_sync(_chat_once)
    except TelemetryShutdownError as e:
        e.result = reply
        raise
    return reply
