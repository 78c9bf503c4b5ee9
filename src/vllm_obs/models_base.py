"""Data model for model discovery and chat calls."""
from typing import Any
from pydantic import BaseModel, ConfigDict
from vllm_obs.errors import EmptyModelList


class ModelDescriptor(BaseModel):
    """One entry of the `/models` listing."""

    model_config = ConfigDict(frozen=True, extra='ignore')

    id: str
    object: str = 'model'
    created: int = 0
    owned_by: str = ''
    root: Any = None
    parent: Any = None


class ModelList(BaseModel):
    """The `/models` listing; the first entry is the served (default) model."""

    model_config = ConfigDict(frozen=True, extra='ignore')

    object: str = 'list'
    data: list[ModelDescriptor] = []

    def first_id(self) -> str:
        """
        Return the id of the first listed model.

        Raises:
            EmptyModelList: If `data` is empty.
        """
        if not self.data:
            raise EmptyModelList("The inference endpoint did not list any models.")
        return self.data[0].id


def system_message(content: str) -> dict:
    """Returns a system message."""
    return {'role': 'system', 'content': content}


def user_message(content: str) -> dict:
    """Returns a user message."""
    return {'role': 'user', 'content': content}


class ChatRequest(BaseModel):
    """Input to a single chat completion call."""

    model_config = ConfigDict(frozen=True)

    model: str
    system_role: str
    user_message: str

    def messages(self) -> list[dict]:
        """The system message followed by the user message."""
        return [system_message(self.system_role), user_message(self.user_message)]


class TraceContext(BaseModel):
    """OpenTelemetry trace context of the span that produced a result."""

    trace_id: str | None = None
    span_id: str | None = None


class ChatResult(BaseModel):
    """Reply of a chat completion call plus its usage and timing."""

    text: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    duration_seconds: float
    trace_context: TraceContext | None = None
