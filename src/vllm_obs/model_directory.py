"""Discover which model the inference endpoint is serving."""
import logging
import httpx
import yaml
from pydantic import ValidationError
from vllm_obs.errors import DecodeError, HTTPStatusError, TransportError
from vllm_obs.models_base import ModelList

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def list_models(
        endpoint_base: str,
        *,
        allow_insecure_tls: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.Client | None = None,
        ) -> ModelList:
    """
    Fetch and parse `<endpoint_base>/models`. Every call performs a fresh request.

    Args:
        endpoint_base:
            Base URL of the OpenAI-compatible API, e.g. `https://vllm.internal/v1`.
        allow_insecure_tls:
            Skip TLS peer verification (self-signed internal endpoints).
        timeout:
            Request timeout in seconds.
        http_client:
            Client to use instead of creating one (the caller keeps ownership).

    Raises:
        TransportError: The endpoint could not be reached.
        HTTPStatusError: The endpoint answered with anything other than 200.
        DecodeError: The body is not a valid model list.
    """
    url = endpoint_base.rstrip('/') + '/models'
    client = http_client or httpx.Client(verify=not allow_insecure_tls, timeout=timeout)
    try:
        response = client.get(url)
    except httpx.HTTPError as e:
        raise TransportError(url, str(e) or type(e).__name__) from e
    finally:
        if http_client is None:
            client.close()

    if response.status_code != httpx.codes.OK:
        raise HTTPStatusError(response.status_code, url)

    try:
        body = yaml.safe_load(response.text)
    except yaml.YAMLError as e:
        raise DecodeError(f"Error parsing model list from {url}: {e}") from e
    if not isinstance(body, dict):
        raise DecodeError(f"Expected a model list object from {url}, got {type(body).__name__}")
    try:
        return ModelList.model_validate(body)
    except ValidationError as e:
        raise DecodeError(f"Invalid model list from {url}: {e}") from e


def discover_default_model(
        endpoint_base: str,
        *,
        allow_insecure_tls: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.Client | None = None,
        ) -> str:
    """
    Return the id of the first model listed by the inference endpoint.

    Raises:
        TransportError, HTTPStatusError, DecodeError: see `list_models`.
        EmptyModelList: The listing contains no models.
    """
    model_list = list_models(
        endpoint_base,
        allow_insecure_tls=allow_insecure_tls,
        timeout=timeout,
        http_client=http_client,
    )
    model_id = model_list.first_id()
    logger.debug("Selected model `%s` out of %d listed", model_id, len(model_list.data))
    return model_id
