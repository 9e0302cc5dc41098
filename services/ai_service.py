"""
AI Service Module

This module handles AI operations using Google's Gemini API.
It implements the GenerationClient interface used by the response pipeline:
concept analysis of a post (Stage 1) and reply drafting (Stage 2).
Calls are never retried here; the pipeline owns the retry policy.
"""

import json
import re
from typing import Any, Dict, Optional

import google.generativeai as genai

from config import settings
from data.models import OpportunityAnalysis
from utils.exceptions import ConfigurationError, GenerationError
from utils.logger import get_logger

logger = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_analysis(text: str) -> OpportunityAnalysis:
    """
    Parse the Stage 1 JSON answer.

    Tolerates a markdown code fence around the JSON and leading or trailing prose.

    Raises:
        GenerationError: No usable JSON object was found.
    """
    if not text or not text.strip():
        raise GenerationError("Empty analysis response")

    cleaned = text.strip()
    fence = _FENCE_PATTERN.match(cleaned)
    if fence:
        cleaned = fence.group(1)
    else:
        start, end = cleaned.find('{'), cleaned.rfind('}')
        if start != -1 and end > start:
            cleaned = cleaned[start:end + 1]

    try:
        data: Dict[str, Any] = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Analysis response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError("Analysis response is not a JSON object")

    keywords = data.get('keywords') or []
    if isinstance(keywords, str):
        keywords = [k.strip() for k in keywords.split(',')]
    keywords = [str(k).strip() for k in keywords if str(k).strip()]

    return OpportunityAnalysis(
        keywords=keywords,
        main_topic=str(data.get('mainTopic') or data.get('main_topic') or ''),
        domain=str(data.get('domain') or ''),
        question=str(data.get('question') or 'none')
    )


class GeminiClient:
    """GenerationClient backed by Google's Gemini API."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        """
        Initialize the client with the Gemini API.

        Configures the API key and, unless a model is given, selects an
        appropriate model based on availability.
        """
        api_key = api_key or settings.GOOGLE_AI_API_KEY
        if not api_key:
            raise ConfigurationError("Missing required GOOGLE_AI_API_KEY")

        genai.configure(api_key=api_key)

        self.model_name = model_name or self._select_model()
        logger.info(f"Selected AI model: {self.model_name}")
        self.model = genai.GenerativeModel(model_name=self.model_name)

    @staticmethod
    def _select_model() -> str:
        try:
            available_models = [m.name for m in genai.list_models()]
        except Exception as e:
            raise GenerationError(f"Error listing Gemini models: {e}") from e

        # Select a model based on preference order
        for preferred in settings.DEFAULT_AI_MODELS:
            for available in available_models:
                if preferred in available:
                    return available

        if available_models:
            # If none of our preferred models are available, just use the first one
            return available_models[0]

        raise GenerationError("No Gemini models available")

    def _complete(self, prompt: str, max_output_tokens: int, stage: str) -> str:
        try:
            response = self.model.generate_content(
                prompt,
                generation_config={'max_output_tokens': max_output_tokens}
            )
            text = response.text
        except Exception as e:
            raise GenerationError(f"Gemini {stage} request failed: {e}") from e

        if not text or not text.strip():
            raise GenerationError(f"Gemini returned an empty {stage} response")
        return text

    def analyze(self, prompt: str) -> OpportunityAnalysis:
        """
        Run the analysis prompt and parse keywords, topic, domain and question.

        Raises:
            GenerationError: The request failed or the answer was not JSON.
        """
        text = self._complete(prompt, settings.ANALYSIS_MAX_OUTPUT_TOKENS, "analysis")
        return parse_analysis(text)

    def generate(self, prompt: str) -> str:
        """Run the generation prompt and return the reply text without surrounding quotes."""
        text = self._complete(prompt, settings.GENERATION_MAX_OUTPUT_TOKENS, "generation").strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
            text = text[1:-1].strip()
        return text
