"""Abstract base class for vision-capable inference clients.

Defines the contract for the external model service that looks at item
photos.  Each pipeline stage hands the client a :class:`StagePrompt`, the
image references, and the structured context accumulated by earlier
stages, and gets back one JSON object.  Implementations wrap the Anthropic
API (Claude) or OpenAI; the adapter pattern keeps the orchestrator
provider-agnostic.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.models.analysis import StageName


class StagePrompt(BaseModel):
    """Stage-specific instructions sent with every inference call."""

    model_config = ConfigDict(frozen=True)

    stage: StageName
    system_prompt: str
    user_prompt: str
    max_tokens: int = 2000
    temperature: float = 0.1


# Concrete implementations: AnthropicVisionClient, OpenAIVisionClient
# Located in: src/providers/llm/
class IVisionInferenceClient(ABC):
    """Contract for the vision model used by every pipeline stage."""

    @abstractmethod
    async def infer(
        self,
        stage_prompt: StagePrompt,
        image_refs: list[str],
        prior_context: dict[str, Any],
    ) -> dict[str, Any]:
        """Run one stage against the images and return its JSON object.

        Parameters
        ----------
        stage_prompt:
            System/user instructions for the stage.
        image_refs:
            ``http(s)`` URLs or ``data:image/...`` URLs, original photos
            first, then any photos supplied as interactive evidence.
        prior_context:
            Structured output of earlier stages plus user-supplied text
            evidence.  Serialised into the user message by the adapter.

        Returns
        -------
        dict
            The parsed (and, if needed, repaired) JSON object.

        Raises
        ------
        src.utils.errors.InferenceError
            If the API call fails or returns no content.
        src.utils.errors.ParseError
            If the response cannot be parsed into a JSON object.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"anthropic"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured (no network call)."""


def render_user_message(stage_prompt: StagePrompt, prior_context: dict[str, Any]) -> str:
    """Combine the stage's user prompt with the serialised prior context.

    Shared by every adapter so all providers see identical text.
    """
    if not prior_context:
        return stage_prompt.user_prompt
    context_json = json.dumps(prior_context, indent=2, default=str, ensure_ascii=False)
    return f"{stage_prompt.user_prompt}\n\nCONTEXT FROM EARLIER STAGES:\n{context_json}"
