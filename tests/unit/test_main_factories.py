"""Unit tests for factory functions in src/main.py.

Covers vision client selection, build_components assembly with memory
and SQLite stores, store initialisation and the create_app factory, all
with a scripted vision client so no API keys or network are needed.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI

from src.config.settings import Settings
from tests.conftest import FakeVisionClient


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    """Settings with no API keys and in-memory stores unless overridden."""
    defaults = {
        "openai_api_key": "",
        "openai_base_url": "",
        "anthropic_api_key": "",
        "analysis_db_path": "",
        "session_db_path": "",
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _build(app_config: dict | None = None, **overrides) -> dict:
    from src.main import build_components

    return build_components(
        _settings(**overrides),
        app_config if app_config is not None else {},
        http_client=MagicMock(),
        vision_client=FakeVisionClient(),
    )


# ======================================================================
# _build_vision_client
# ======================================================================


class TestBuildVisionClient:
    def test_anthropic_priority(self) -> None:
        from src.main import _build_vision_client
        from src.providers.llm.anthropic_provider import AnthropicVisionClient

        s = _settings(anthropic_api_key="test-anthropic", openai_api_key="sk-also-set")
        assert isinstance(_build_vision_client(s), AnthropicVisionClient)

    def test_openai_fallback(self) -> None:
        from src.main import _build_vision_client
        from src.providers.llm.openai_provider import OpenAIVisionClient

        client = _build_vision_client(_settings(openai_api_key="sk-test"))
        assert isinstance(client, OpenAIVisionClient)
        assert client.get_provider_name() == "openai"

    def test_no_key_is_a_configuration_error(self) -> None:
        from src.main import _build_vision_client
        from src.utils.errors import ConfigurationError

        with pytest.raises(ConfigurationError, match="No vision provider configured"):
            _build_vision_client(_settings())


# ======================================================================
# build_components
# ======================================================================


class TestBuildComponents:
    def test_memory_assembly(self) -> None:
        from src.providers.store.memory_stores import MemoryAnalysisStore, MemorySessionStore
        from src.services.analysis_service import AnalysisService
        from src.services.evaluation_harness import EvaluationHarness
        from src.services.interactive_session import InteractiveSessionManager

        components = _build(interactive_threshold=0.8)

        assert isinstance(components["analysis_store"], MemoryAnalysisStore)
        assert isinstance(components["session_store"], MemorySessionStore)
        assert isinstance(components["analysis_service"], AnalysisService)
        assert isinstance(components["session_manager"], InteractiveSessionManager)
        assert isinstance(components["evaluation_harness"], EvaluationHarness)
        assert components["interactive_threshold"] == 0.8
        assert components["pipeline"].confidence_tracker is components["confidence_tracker"]
        assert components["provider_registry"] == {
            "vision": True,
            "vision_provider": "fake-vision",
            "analysis_store": "memory_analysis_store",
            "session_store": "MemorySessionStore",
        }

    def test_evaluation_config_overrides_settings(self) -> None:
        components = _build(
            {"evaluation": {"concurrency": 7, "item_timeout": 12, "pass_threshold": 80}},
            evaluation_concurrency=2,
        )
        harness = components["evaluation_harness"]
        assert harness._concurrency == 7
        assert harness._item_timeout == 12.0
        assert harness._pass_threshold == 80.0

    def test_settings_used_without_evaluation_config(self) -> None:
        harness = _build(evaluation_concurrency=5)["evaluation_harness"]
        assert harness._concurrency == 5

    @pytest.mark.asyncio
    async def test_sqlite_stores_initialised(self, tmp_path) -> None:
        from src.main import initialize_stores
        from src.providers.store.sqlite_analysis_store import SQLiteAnalysisStore
        from src.providers.store.sqlite_session_store import SQLiteSessionStore

        components = _build(
            analysis_db_path=str(tmp_path / "db" / "analyses.db"),
            session_db_path=str(tmp_path / "db" / "sessions.db"),
        )
        assert isinstance(components["analysis_store"], SQLiteAnalysisStore)
        assert isinstance(components["session_store"], SQLiteSessionStore)

        await initialize_stores(components)

        assert (tmp_path / "db" / "analyses.db").exists()
        assert (tmp_path / "db" / "sessions.db").exists()


# ======================================================================
# create_app
# ======================================================================


class TestCreateApp:
    def test_routes_registered(self) -> None:
        from src.main import create_app

        application = create_app()
        assert isinstance(application, FastAPI)
        paths = set(application.openapi()["paths"])
        assert {
            "/api/v1/analyses",
            "/api/v1/analyses/stream",
            "/api/v1/sessions/{session_id}/reanalyze",
            "/api/v1/evaluations/smoke",
            "/api/v1/health",
        } <= paths
