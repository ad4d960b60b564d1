"""OpenAI-compatible vision inference adapter.

Wraps the ``openai`` async client to implement
:class:`IVisionInferenceClient`.  When a custom ``openai_base_url`` is
configured (any OpenAI-compatible endpoint), the client points at that URL
instead of the default OpenAI endpoint.

Images are passed as ``image_url`` parts: both http(s) URLs and
``data:image/...;base64,`` URLs are accepted by the chat API as-is.
Responses are requested in JSON mode and still go through
:func:`parse_model_json`, which handles fences and truncation.
"""

from __future__ import annotations

from typing import Any

import httpx
import openai
import structlog

from src.config.settings import Settings
from src.interfaces.vision_client import IVisionInferenceClient, StagePrompt, render_user_message
from src.utils.errors import InferenceError, StageTimeoutError
from src.utils.json_repair import parse_model_json

logger = structlog.get_logger(logger_name=__name__)


class OpenAIVisionClient(IVisionInferenceClient):
    """Vision client backed by an OpenAI-compatible API (``gpt-4o`` by default)."""

    def __init__(
        self, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        # base_url only when a custom endpoint is configured.
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.stage_timeout_seconds, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        if http_client is not None:
            client_kwargs["http_client"] = http_client

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_vision_model or "gpt-4o"
        self._max_tokens = settings.inference_max_tokens
        self._provider_label = (
            "openai-compatible" if settings.openai_base_url else "openai"
        )

    # ------------------------------------------------------------------
    # IVisionInferenceClient implementation
    # ------------------------------------------------------------------

    async def infer(
        self,
        stage_prompt: StagePrompt,
        image_refs: list[str],
        prior_context: dict[str, Any],
    ) -> dict[str, Any]:
        user_content: list[dict[str, Any]] = [
            {"type": "text", "text": render_user_message(stage_prompt, prior_context)}
        ]
        user_content.extend(
            {"type": "image_url", "image_url": {"url": ref, "detail": "high"}}
            for ref in image_refs
        )
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": stage_prompt.system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=stage_prompt.temperature,
                max_tokens=min(stage_prompt.max_tokens, self._max_tokens),
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as exc:
            raise StageTimeoutError(
                message=f"{self._provider_label} timed out during {stage_prompt.stage.value}",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise InferenceError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InferenceError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_inference",
            model=self._model,
            provider=self._provider_label,
            stage=stage_prompt.stage.value,
            images=len(image_refs),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return parse_model_json(content, stage=stage_prompt.stage.value)

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return self._provider_label
