"""
Tests for AI Service - Gemini generation client

Tests for analysis parsing, model selection and the analyze/generate calls.
"""

import pytest
from types import SimpleNamespace
from unittest.mock import patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.ai_service import GeminiClient, parse_analysis
from utils.exceptions import ConfigurationError, GenerationError


@pytest.fixture
def mock_genai():
    with patch('services.ai_service.genai') as genai:
        genai.list_models.return_value = [
            SimpleNamespace(name='models/gemini-1.5-pro'),
            SimpleNamespace(name='models/gemini-2.0-flash'),
        ]
        yield genai


def _model_returning(mock_genai, text):
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.return_value = SimpleNamespace(text=text)
    return model


class TestParseAnalysis:

    def test_plain_json(self):
        analysis = parse_analysis(
            '{"keywords": ["rust", "borrow checker"], "mainTopic": "Rust", '
            '"domain": "technology", "question": "Why is it strict?"}')

        assert analysis.keywords == ["rust", "borrow checker"]
        assert analysis.main_topic == "Rust"
        assert analysis.domain == "technology"
        assert analysis.question == "Why is it strict?"

    def test_code_fence(self):
        analysis = parse_analysis('```json\n{"keywords": ["a"], "mainTopic": "A", "domain": "d"}\n```')

        assert analysis.keywords == ["a"]
        assert analysis.question == "none"

    def test_surrounding_prose(self):
        analysis = parse_analysis('Here you go: {"keywords": "x, y", "main_topic": "T", "domain": "d"} Done.')

        assert analysis.keywords == ["x", "y"]
        assert analysis.main_topic == "T"

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2]", "{broken"])
    def test_invalid(self, text):
        with pytest.raises(GenerationError):
            parse_analysis(text)


class TestGeminiClient:

    def test_missing_api_key(self, mock_genai):
        with patch('services.ai_service.settings') as mock_settings:
            mock_settings.GOOGLE_AI_API_KEY = None
            with pytest.raises(ConfigurationError):
                GeminiClient()

    def test_selects_preferred_model(self, mock_genai):
        client = GeminiClient(api_key="key")

        mock_genai.configure.assert_called_once_with(api_key="key")
        assert client.model_name == 'models/gemini-2.0-flash'
        mock_genai.GenerativeModel.assert_called_once_with(model_name='models/gemini-2.0-flash')

    def test_falls_back_to_first_model(self, mock_genai):
        mock_genai.list_models.return_value = [SimpleNamespace(name='models/other')]

        assert GeminiClient(api_key="key").model_name == 'models/other'

    def test_no_models(self, mock_genai):
        mock_genai.list_models.return_value = []

        with pytest.raises(GenerationError):
            GeminiClient(api_key="key")

    def test_explicit_model_skips_listing(self, mock_genai):
        client = GeminiClient(api_key="key", model_name="models/custom")

        assert client.model_name == "models/custom"
        mock_genai.list_models.assert_not_called()

    def test_analyze(self, mock_genai):
        model = _model_returning(mock_genai, '{"keywords": ["rust"], "mainTopic": "Rust", "domain": "tech"}')

        analysis = GeminiClient(api_key="key").analyze("prompt")

        assert analysis.keywords == ["rust"]
        assert model.generate_content.call_args[0][0] == "prompt"
        assert "max_output_tokens" in model.generate_content.call_args.kwargs["generation_config"]

    def test_generate_strips_quotes(self, mock_genai):
        _model_returning(mock_genai, '  "Thanks, that is a great point."  ')

        assert GeminiClient(api_key="key").generate("prompt") == "Thanks, that is a great point."

    def test_empty_generation(self, mock_genai):
        _model_returning(mock_genai, "   ")

        with pytest.raises(GenerationError):
            GeminiClient(api_key="key").generate("prompt")

    def test_request_failure(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(GenerationError) as exc_info:
            GeminiClient(api_key="key").generate("prompt")
        assert exc_info.value.retryable is True
