"""Command line entry point: send prompts to a vLLM server while exporting telemetry."""
import asyncio
import logging
import sys
import click
from vllm_obs.config import Settings
from vllm_obs.errors import (
    CompletionError,
    EmptyCompletionError,
    VllmObsError,
)
from vllm_obs.model_directory import discover_default_model, list_models
from vllm_obs.openai import InstrumentedChat
from vllm_obs.telemetry import TelemetryContext

logger = logging.getLogger(__name__)

DEFAULT_ROLE = (
    "**You are a helpful pirate chatbot. Your responses must be specific and restricted to a "
    "single line.**"
)
DEFAULT_PROMPTS = (
    "How deep is the pacific ocean?",
    "how deep is the Mariana Trench?",
    "what is the nearest city to the Mariana Trench?",
)


def _fail(error: Exception) -> None:
    click.echo(click.style(f"[ERROR]: {error}", fg='red', bold=True), err=True)
    sys.exit(1)


async def send_prompts(
        chat: InstrumentedChat,
        model: str,
        role: str,
        prompts: list[str],
        ) -> list[str | None]:
    """Send each prompt in order; failed prompts are logged and yield None."""
    replies = []
    try:
        for prompt in prompts:
            logger.info("message  >>> %s", prompt)
            try:
                reply = await chat.chat_async(model, role, prompt)
            except (CompletionError, EmptyCompletionError) as e:
                logger.error("%s", e)
                replies.append(None)
                continue
            logger.info("response >>> %s", reply)
            replies.append(reply)
    finally:
        await chat.aclose()
    return replies


@click.group()
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='INFO',
    show_default=True,
)
def main(log_level: str) -> None:
    """Exercise a self-hosted inference server and report traces and metrics."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@main.command()
def models() -> None:
    """List the models served by the inference endpoint."""
    try:
        settings = Settings.from_env()
        model_list = list_models(
            settings.inference_base_url,
            allow_insecure_tls=settings.allow_insecure_tls,
            timeout=settings.list_models_timeout,
        )
    except VllmObsError as e:
        _fail(e)
    for i, descriptor in enumerate(model_list.data):
        marker = ' (default)' if i == 0 else ''
        click.echo(f"{descriptor.id}{marker}")


@main.command()
@click.option('--prompt', 'prompts', multiple=True, help="Prompt to send (repeatable).")
@click.option('--role', default=DEFAULT_ROLE, help="System instruction sent with every prompt.")
@click.option('--model', default=None, help="Model id; discovered from the endpoint if omitted.")
def chat(prompts: tuple[str, ...], role: str, model: str | None) -> None:
    """Send prompts to the inference endpoint, one telemetry pipeline for the whole run."""
    try:
        settings = Settings.from_env()
        if model is None:
            model = discover_default_model(
                settings.inference_base_url,
                allow_insecure_tls=settings.allow_insecure_tls,
                timeout=settings.list_models_timeout,
            )
    except VllmObsError as e:
        _fail(e)
    click.echo(f"vLLM AI Model: {model}\n")

    try:
        with TelemetryContext(settings, install_global=True) as telemetry:
            chat_client = InstrumentedChat(telemetry, settings)
            replies = asyncio.run(
                send_prompts(chat_client, model, role, list(prompts or DEFAULT_PROMPTS)),
            )
            # before shutdown, which may raise
            for reply in replies:
                if reply is not None:
                    click.echo(reply)
    except VllmObsError as e:
        _fail(e)


if __name__ == '__main__':
    main()
