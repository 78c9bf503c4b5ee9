"""Tests for the command line entry point."""
from unittest.mock import MagicMock, patch
import httpx
import openai
import pytest
from click.testing import CliRunner
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from vllm_obs import (
    ConfigMissing,
    EmptyModelList,
    ModelList,
    Settings,
    TelemetryContext,
    TelemetryShutdownError,
)
from vllm_obs.cli import DEFAULT_PROMPTS, DEFAULT_ROLE, main


@pytest.fixture
def contexts(settings: Settings):  # noqa: ANN201
    """Replace the CLI's TelemetryContext with in-memory pipelines."""
    created = []

    def _factory(settings: Settings, **kwargs: dict) -> TelemetryContext:
        assert kwargs == {'install_global': True}
        context = TelemetryContext(
            settings,
            span_exporter_factory=InMemorySpanExporter,
            metric_reader_factory=InMemoryMetricReader,
        )
        created.append(context)
        return context

    with patch('vllm_obs.cli.Settings') as mock_settings, \
            patch('vllm_obs.cli.TelemetryContext', side_effect=_factory):
        mock_settings.from_env.return_value = settings
        yield created


class TestChatCommand:
    """`vllm-obs chat`."""

    def test_default_prompts(self, contexts, mock_openai_client: MagicMock, make_completion):  # noqa: ANN001
        mock_openai_client.chat.completions.create.return_value = make_completion()
        with patch('vllm_obs.cli.discover_default_model', return_value='vllm-model-a') as discover, \
                patch('vllm_obs.openai.AsyncOpenAI', return_value=mock_openai_client):
            result = CliRunner().invoke(main, ['chat'])

        assert result.exit_code == 0, result.output
        assert 'vLLM AI Model: vllm-model-a' in result.output
        discover.assert_called_once()
        create = mock_openai_client.chat.completions.create
        assert create.await_count == len(DEFAULT_PROMPTS)
        sent = [call.kwargs['messages'] for call in create.call_args_list]
        assert [messages[1]['content'] for messages in sent] == list(DEFAULT_PROMPTS)
        assert all(messages[0]['content'] == DEFAULT_ROLE for messages in sent)
        mock_openai_client.close.assert_awaited_once()

        # one pipeline for the whole run, shut down at exit
        assert len(contexts) == 1
        assert not contexts[0].started
        assert len(contexts[0].span_exporter.get_finished_spans()) == len(DEFAULT_PROMPTS)

    def test_failed_prompt_does_not_stop_the_run(
            self, contexts, mock_openai_client: MagicMock, make_completion,  # noqa: ANN001
            ):
        mock_openai_client.chat.completions.create.side_effect = [
            openai.APIConnectionError(
                request=httpx.Request('POST', 'https://vllm.test/v1/chat/completions'),
            ),
            make_completion(content='Second reply'),
        ]
        with patch('vllm_obs.openai.AsyncOpenAI', return_value=mock_openai_client):
            result = CliRunner().invoke(
                main,
                ['chat', '--model', 'given-model', '--prompt', 'first', '--prompt', 'second'],
            )

        assert result.exit_code == 0, result.output
        assert 'Second reply' in result.output
        models = [
            call.kwargs['model']
            for call in mock_openai_client.chat.completions.create.call_args_list
        ]
        assert models == ['given-model', 'given-model']

    def test_replies_printed_when_shutdown_fails(
            self, contexts, mock_openai_client: MagicMock, make_completion,  # noqa: ANN001
            ):
        mock_openai_client.chat.completions.create.return_value = make_completion(
            content='Still here',
        )
        with patch('vllm_obs.openai.AsyncOpenAI', return_value=mock_openai_client), \
                patch.object(
                    TelemetryContext, 'shutdown',
                    side_effect=TelemetryShutdownError(['meter provider: export failed']),
                ):
            result = CliRunner().invoke(main, ['chat', '--model', 'given-model', '--prompt', 'hi'])

        assert result.exit_code == 1
        assert 'Still here' in result.output
        assert 'meter provider: export failed' in result.output
        TelemetryContext.shutdown(contexts[0])

    def test_missing_configuration(self):
        with patch('vllm_obs.cli.Settings') as mock_settings:
            mock_settings.from_env.side_effect = ConfigMissing(['OPENAI_API_KEY'])
            result = CliRunner().invoke(main, ['chat'])
        assert result.exit_code == 1
        assert 'OPENAI_API_KEY' in result.output

    def test_model_discovery_failure(self, contexts):  # noqa: ANN001
        with patch('vllm_obs.cli.discover_default_model', side_effect=EmptyModelList('none')):
            result = CliRunner().invoke(main, ['chat'])
        assert result.exit_code == 1
        assert contexts == []


class TestModelsCommand:
    """`vllm-obs models`."""

    def test_lists_models(self, contexts):  # noqa: ANN001, ARG002
        model_list = ModelList.model_validate({
            'object': 'list',
            'data': [{'id': 'first-model'}, {'id': 'second-model'}],
        })
        with patch('vllm_obs.cli.list_models', return_value=model_list):
            result = CliRunner().invoke(main, ['models'])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ['first-model (default)', 'second-model']
