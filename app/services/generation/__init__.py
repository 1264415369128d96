"""
Content generation behind a provider seam.
"""
from .base import ContentGenerator, GenerationError, GenerationRequest, GenerationResponse
from .factory import get_content_generator

__all__ = [
    "ContentGenerator",
    "GenerationError",
    "GenerationRequest",
    "GenerationResponse",
    "get_content_generator",
]
