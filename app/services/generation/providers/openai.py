"""
OpenAI chat-completions provider for document readings.
"""
import json
import time

from openai import OpenAI, OpenAIError

from app.services.generation.base import (
    ContentGenerator,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
)
from app.services.pricing.catalog import CATEGORY_TITLES
from app.utils.metrics import openai_request_duration_seconds, openai_requests_total

SYSTEM_PROMPT = (
    "You write fortune readings. Answer with a JSON object: "
    '{"title": str, "sections": [{"heading": str, "body": str}]}.'
)


class OpenAIContentGenerator(ContentGenerator):
    """OpenAI text generation provider."""

    def __init__(self, config: dict):
        super().__init__(config)
        self.api_key = config.get("api_key")
        self.model = config.get("model", "gpt-4o-mini")
        self.timeout = config.get("timeout", 120.0)

        if self.api_key:
            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        else:
            self.client = None

    def is_available(self) -> bool:
        return bool(self.api_key and self.client)

    def _user_prompt(self, request: GenerationRequest) -> str:
        parts = [
            f"Category: {CATEGORY_TITLES.get(request.category, request.category)}",
            f"Form: {request.form_type or 'ASK'}",
        ]
        if request.user_data:
            parts.append(f"Profile: {json.dumps(request.user_data, ensure_ascii=False)}")
        if request.user_input:
            parts.append(f"Question: {request.user_input}")
        return "\n".join(parts)

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        if not self.is_available():
            raise GenerationError("OpenAI provider not configured")

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(request.history)
        messages.append({"role": "user", "content": self._user_prompt(request)})

        start = time.time()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            openai_requests_total.labels(status="error").inc()
            raise GenerationError("OpenAI request failed", detail={"error": type(e).__name__}) from e
        finally:
            openai_request_duration_seconds.observe(time.time() - start)
        openai_requests_total.labels(status="success").inc()

        raw = response.choices[0].message.content or ""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise GenerationError("OpenAI returned non-JSON content") from e
        sections = data.get("sections") or []
        if not isinstance(sections, list) or not sections:
            raise GenerationError("OpenAI returned no sections")
        return GenerationResponse(
            title=str(data.get("title") or CATEGORY_TITLES.get(request.category, request.category)),
            sections=[
                {"heading": str(s.get("heading", "")), "body": str(s.get("body", ""))}
                for s in sections
                if isinstance(s, dict)
            ],
            model=self.model,
            provider="openai",
        )
