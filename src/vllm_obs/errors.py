"""Exceptions raised by vllm-obs."""


class VllmObsError(Exception):
    """Base class for all vllm-obs errors."""


class ConfigMissing(VllmObsError):  # noqa: N818
    """One or more required environment variables are not set."""

    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__(f"Missing required configuration: {', '.join(self.names)}")


class TransportError(VllmObsError):
    """Network/TLS/DNS failure reaching an endpoint."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Request to {url} failed: {message}")


class HTTPStatusError(VllmObsError):
    """The model listing endpoint returned a non-OK status."""

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Received non-OK HTTP status code {status_code} from {url}")


class DecodeError(VllmObsError):
    """The model list body could not be parsed."""


class EmptyModelList(VllmObsError):  # noqa: N818
    """The model list was parsed but contains no models."""


class TelemetryInitError(VllmObsError):
    """The trace or metric pipeline could not be constructed."""


class TelemetryShutdownError(VllmObsError):
    """
    Flushing or shutting down a telemetry provider failed.

    `failures` holds one message per provider that failed. When the wrapped call succeeded its
    reply is kept in `result` so callers do not lose it.
    """

    def __init__(self, failures: list[str], result: str | None = None):
        self.failures = list(failures)
        self.result = result
        super().__init__(f"Telemetry shutdown failed: {'; '.join(self.failures)}")


class CompletionError(VllmObsError):
    """The chat completion call failed."""

    def __init__(self, model: str, message: str):
        self.model = model
        super().__init__(f"ChatCompletion error for model `{model}`: {message}")


class EmptyCompletionError(VllmObsError):
    """The chat completion call succeeded but returned no choices."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"No response received from model `{model}`")
