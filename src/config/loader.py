"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY (Junior Developer Guide) ──────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  - Static policy defaults checked into the repo
#   2. .env file           - Local developer overrides (not committed)
#   3. Environment vars    - Set at deploy time
#
# load_config() reads the YAML file first, then deep-merges the
# environment-based Settings values on top.  Policy tables that have no
# env var (domain ceilings, escalation tiers) come only from YAML.
#
# The _deep_merge helper does recursive dict merging:
#   base = {"escalation": {"low_confidence_threshold": 0.6}}
#   overrides = {"escalation": {"value_spread_ratio": 4.0}}
#   result = {"escalation": {"low_confidence_threshold": 0.6,
#                            "value_spread_ratio": 4.0}}
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path

import yaml

from src.config.settings import Settings


def load_config(path: str | None = None, settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.  Defaults to
            ``settings.config_path``.
        settings: Pre-built Settings; a fresh one is read from the
            environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "inference": {
            "available_providers": settings.get_available_vision_providers(),
            "openai_model": settings.openai_vision_model,
            "anthropic_model": settings.anthropic_vision_model,
            "max_tokens": settings.inference_max_tokens,
        },
        "retry": {
            "max_attempts": settings.stage_max_attempts,
            "base_delay": settings.stage_backoff_base_seconds,
            "max_delay": settings.stage_backoff_max_seconds,
            "timeout": settings.stage_timeout_seconds,
        },
        "interactive": {
            "threshold": settings.interactive_threshold,
            "window_rounds": settings.plateau_window_rounds,
            "min_cumulative_gain": settings.plateau_min_cumulative_gain,
            "max_rounds": settings.max_interactive_rounds,
            "escalation_after_rounds": settings.escalation_after_rounds,
        },
        "consensus": {
            "enabled": settings.consensus_enabled,
            "confidence_threshold": settings.consensus_confidence_threshold,
            "high_value_threshold": settings.consensus_high_value_threshold,
            "very_high_value_threshold": settings.consensus_very_high_value_threshold,
            "max_runs": settings.consensus_max_runs,
        },
        "evaluation": {
            "concurrency": settings.evaluation_concurrency,
            "requests_per_minute": settings.evaluation_requests_per_minute,
            "item_timeout": settings.evaluation_item_timeout_seconds,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
