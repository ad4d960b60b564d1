"""Vision inference adapters.

Two concrete implementations of IVisionInferenceClient
(src/interfaces/vision_client.py):
    - AnthropicVisionClient - Claude Sonnet via the Messages API
    - OpenAIVisionClient    - gpt-4o (also supports OpenAI-compatible APIs)

At startup, main.py creates the client matching the available API key
(ANTHROPIC_API_KEY first, then OPENAI_API_KEY) and injects it into the
pipeline through app.state.
"""

from src.providers.llm.anthropic_provider import AnthropicVisionClient
from src.providers.llm.openai_provider import OpenAIVisionClient

__all__ = ["AnthropicVisionClient", "OpenAIVisionClient"]
