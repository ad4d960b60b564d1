"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK (Junior Developer Guide) ───────────────────────
#
# This class uses pydantic-settings to automatically read configuration
# from TWO sources (in priority order):
#
#   1. **Environment variables** - e.g., ANTHROPIC_API_KEY=sk-ant-abc123
#      (highest priority - always wins)
#   2. **.env file** - key=value lines in the project root .env file
#      (lower priority - used for local development)
#
# The mapping is automatic: field name `interactive_threshold` maps to
# env var `INTERACTIVE_THRESHOLD`.
#
# Policy knobs (retry bounds, diminishing-returns cutoff, evaluation
# concurrency) live here too so an operator can tune them per deploy
# without touching code.  The policy objects themselves are built from
# these values in main.py / the CLI.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """VintageVision application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Vision inference providers ===
    # Empty string = "not configured" → provider selection in main.py
    # skips it and falls through to the next one.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_vision_model: str = "gpt-4o"
    anthropic_api_key: str = ""
    anthropic_vision_model: str = "claude-sonnet-4-20250514"
    inference_max_tokens: int = 4000

    # === Pipeline retry / timeout policy ===
    stage_max_attempts: int = 3
    stage_backoff_base_seconds: float = 1.0
    stage_backoff_max_seconds: float = 8.0
    stage_timeout_seconds: float = 60.0

    # === Interactive sessions ===
    interactive_threshold: float = 0.85
    plateau_window_rounds: int = 3
    plateau_min_cumulative_gain: float = 0.05
    max_interactive_rounds: int = 5
    escalation_after_rounds: int = 2

    # === Consensus (repeat runs for uncertain or high-value items) ===
    consensus_enabled: bool = False
    consensus_confidence_threshold: float = 0.75
    consensus_high_value_threshold: int = 5000
    consensus_very_high_value_threshold: int = 25000
    consensus_max_runs: int = 3

    # === Evaluation harness ===
    evaluation_concurrency: int = 3
    evaluation_requests_per_minute: float = 20.0
    evaluation_item_timeout_seconds: float = 300.0

    # === Persistence ===
    # Empty path = in-memory store (tests, ephemeral deploys).
    analysis_db_path: str = "data/analyses.db"
    session_db_path: str = "data/session_state.db"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    config_path: str = "config/config.yaml"

    def get_available_vision_providers(self) -> list[str]:
        """Return provider names with non-empty API keys, in selection priority order."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
