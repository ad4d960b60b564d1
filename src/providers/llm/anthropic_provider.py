"""Anthropic vision inference adapter.

Wraps the ``anthropic`` async client to implement
:class:`IVisionInferenceClient` via the Claude Messages API.

Key differences from the OpenAI adapter:
    - System prompt is a separate parameter, not a message in the list
    - Images use the "image" content type; data URLs become a base64
      source and http(s) URLs a "url" source
    - There is no JSON response mode, so the reply is parsed (and repaired
      when truncated) by :func:`parse_model_json`
    - Response content is a list of blocks, so text blocks are joined
"""

from __future__ import annotations

from typing import Any

import anthropic
import httpx
import structlog

from src.config.settings import Settings
from src.interfaces.vision_client import IVisionInferenceClient, StagePrompt, render_user_message
from src.utils.errors import InferenceError, StageTimeoutError
from src.utils.json_repair import parse_model_json

logger = structlog.get_logger(logger_name=__name__)


def _image_block(ref: str) -> dict[str, Any]:
    """Build an Anthropic image content block from an image reference."""
    if ref.startswith("data:"):
        header, _, data = ref.partition(",")
        media_type = header[len("data:") :].split(";", 1)[0] or "image/jpeg"
        if media_type == "image/jpg":
            media_type = "image/jpeg"
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": data},
        }
    return {"type": "image", "source": {"type": "url", "url": ref}}


class AnthropicVisionClient(IVisionInferenceClient):
    """Vision client backed by the Anthropic Claude API."""

    def __init__(
        self, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> None:
        self._settings = settings
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=settings.stage_timeout_seconds,
            http_client=http_client,
        )
        self._model = settings.anthropic_vision_model
        self._max_tokens = settings.inference_max_tokens

    # ------------------------------------------------------------------
    # IVisionInferenceClient implementation
    # ------------------------------------------------------------------

    async def infer(
        self,
        stage_prompt: StagePrompt,
        image_refs: list[str],
        prior_context: dict[str, Any],
    ) -> dict[str, Any]:
        content: list[dict[str, Any]] = [_image_block(ref) for ref in image_refs]
        content.append({"type": "text", "text": render_user_message(stage_prompt, prior_context)})
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=min(stage_prompt.max_tokens, self._max_tokens),
                system=stage_prompt.system_prompt,
                messages=[{"role": "user", "content": content}],
                temperature=stage_prompt.temperature,
            )
        except anthropic.APITimeoutError as exc:
            raise StageTimeoutError(
                message=f"Anthropic timed out during {stage_prompt.stage.value}",
                provider_name=self.get_provider_name(),
            ) from exc
        except anthropic.APIError as exc:
            raise InferenceError(
                message=f"Anthropic API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise InferenceError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "anthropic_inference",
            model=self._model,
            stage=stage_prompt.stage.value,
            images=len(image_refs),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return parse_model_json("\n".join(text_blocks), stage=stage_prompt.stage.value)

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "anthropic"
