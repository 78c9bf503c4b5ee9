"""Environment-sourced configuration."""
import os
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict
from vllm_obs.errors import ConfigMissing
from vllm_obs.telemetry import is_telemetry_enabled
from vllm_obs.utilities import get_package_version


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('true', '1', 'yes')


class Settings(BaseModel):
    """
    Connection and identity settings for the inference endpoint and the observability backend.

    Use `Settings.from_env()` to build an instance from environment variables (a `.env` file in
    the working directory is loaded first).
    """

    model_config = ConfigDict(frozen=True)

    openai_hostname: str
    openai_api_key: str
    otel_hostname: str = ''
    otel_api_key: str = ''
    # Internal endpoints commonly use self-signed certificates.
    allow_insecure_tls: bool = True
    otel_auth_scheme: str = 'SUSEObservability'
    telemetry_enabled: bool = True

    service_name: str = 'vllm-client'
    service_version: str = 'unknown'
    service_namespace: str = 'openai'
    deployment_environment: str = 'dev'
    telemetry_sdk_name: str = 'openlit'

    request_timeout: float = 120.0
    list_models_timeout: float = 60.0

    @property
    def inference_base_url(self) -> str:
        """Base URL of the OpenAI-compatible API (e.g. `https://vllm.internal/v1`)."""
        return f"https://{self.openai_hostname}/v1"

    @property
    def traces_endpoint(self) -> str:
        """OTLP/HTTP trace endpoint (plaintext)."""
        return f"http://{self.otel_hostname}/v1/traces"

    @property
    def metrics_endpoint(self) -> str:
        """OTLP/HTTP metric endpoint (plaintext)."""
        return f"http://{self.otel_hostname}/v1/metrics"

    @property
    def otel_headers(self) -> dict[str, str]:
        """Headers sent with every export request."""
        return {
            'Content-Type': 'application/json',
            'Authorization': f"{self.otel_auth_scheme} {self.otel_api_key}",
        }

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        `OPENAI_HOSTNAME` and `OPENAI_API_KEY` are always required.
        `SUSEOBS_EXPORTER_OTLP_HOSTNAME` and `SUSEOBS_CLIENT_API_KEY` are required unless
        telemetry is disabled with `OTEL_SDK_DISABLED=true`.

        Raises:
            ConfigMissing: naming every required variable that is missing or empty.
        """
        load_dotenv()
        telemetry_enabled = is_telemetry_enabled()

        required = ['OPENAI_HOSTNAME', 'OPENAI_API_KEY']
        if telemetry_enabled:
            required += ['SUSEOBS_EXPORTER_OTLP_HOSTNAME', 'SUSEOBS_CLIENT_API_KEY']
        missing = [name for name in required if not os.getenv(name, '').strip()]
        if missing:
            raise ConfigMissing(missing)

        optional = {
            'otel_auth_scheme': os.getenv('SUSEOBS_AUTH_SCHEME'),
            'service_name': os.getenv('OTEL_SERVICE_NAME'),
            'service_namespace': os.getenv('OTEL_SERVICE_NAMESPACE'),
            'deployment_environment': os.getenv('DEPLOYMENT_ENVIRONMENT'),
        }
        return cls(
            openai_hostname=os.environ['OPENAI_HOSTNAME'].strip(),
            openai_api_key=os.environ['OPENAI_API_KEY'].strip(),
            otel_hostname=os.getenv('SUSEOBS_EXPORTER_OTLP_HOSTNAME', '').strip(),
            otel_api_key=os.getenv('SUSEOBS_CLIENT_API_KEY', '').strip(),
            allow_insecure_tls=_env_flag('ALLOW_INSECURE_TLS', default=True),
            telemetry_enabled=telemetry_enabled,
            service_version=os.getenv('OTEL_SERVICE_VERSION') or get_package_version(),
            **{key: value for key, value in optional.items() if value},
        )
