"""
Base classes and types for content generation providers.
Used by the factory and by ArtifactService / the regeneration task.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class GenerationRequest:
    """What to generate a reading for."""
    category: str
    form_type: str | None
    user_input: str | None
    user_data: dict[str, Any] | None = None
    history: list[dict[str, str]] = field(default_factory=list)


@dataclass
class GenerationResponse:
    title: str
    sections: list[dict[str, str]]
    model: str
    provider: str

    def as_content(self) -> dict[str, Any]:
        return {"title": self.title, "sections": self.sections, "model": self.model, "provider": self.provider}


class GenerationError(Exception):
    """Raised when a provider cannot produce content."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class ContentGenerator(ABC):
    """Base class for content generation providers."""

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...
