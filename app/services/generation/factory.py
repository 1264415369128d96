"""
Factory for the configured content generation provider.
"""
import logging

from app.core.config import settings
from app.services.generation.base import ContentGenerator, GenerationError
from app.services.generation.providers.openai import OpenAIContentGenerator

logger = logging.getLogger(__name__)

PROVIDERS = {
    "openai": OpenAIContentGenerator,
}


def get_content_generator(provider: str = "openai") -> ContentGenerator:
    cls = PROVIDERS.get(provider)
    if cls is None:
        raise GenerationError(f"unknown content provider: {provider}")
    config = {
        "api_key": settings.openai_api_key,
        "model": settings.openai_text_model,
        "timeout": settings.openai_request_timeout,
    }
    generator = cls(config)
    if not generator.is_available():
        logger.warning("content_provider_unavailable", extra={"error": provider})
    return generator
