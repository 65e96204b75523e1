"""
Gemini Model Manager - shared Vertex AI model instance.

Initialized lazily on first use so the engine starts without Google Cloud
credentials; the gemini provider reports itself unavailable instead.
"""

from __future__ import annotations

from functools import lru_cache

from tabq.infrastructure.settings import (
    GEMINI_LOCATION,
    GEMINI_MAX_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GOOGLE_CLOUD_PROJECT,
)
from tabq.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=4)
def get_gemini_model(model_name: str = GEMINI_MODEL):
    """
    Get or create a shared Gemini model instance.

    Returns:
        GenerativeModel configured with the tabq generation settings

    Raises:
        GeminiInitializationError: If the SDK or project is missing
    """
    if not GOOGLE_CLOUD_PROJECT:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    try:
        import vertexai
        from vertexai.generative_models import GenerationConfig, GenerativeModel
    except ImportError as e:
        raise GeminiInitializationError(
            "Vertex AI SDK not installed. Install google-cloud-aiplatform."
        ) from e

    try:
        vertexai.init(project=GOOGLE_CLOUD_PROJECT, location=GEMINI_LOCATION)
        model = GenerativeModel(
            model_name,
            generation_config=GenerationConfig(
                temperature=GEMINI_TEMPERATURE,
                max_output_tokens=GEMINI_MAX_TOKENS,
            ),
        )
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info(
        "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
        GOOGLE_CLOUD_PROJECT,
        GEMINI_LOCATION,
        model_name,
    )
    return model
