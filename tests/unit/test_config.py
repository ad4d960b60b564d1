"""Unit tests for Settings, load_config and the static domain policy tables."""

from __future__ import annotations

from src.config.domain_policy import (
    DOMAIN_ALIASES,
    STAGE_ORDER,
    STAGE_PROGRESS,
    confidence_ceiling,
    photo_request,
    quick_questions_for,
)
from src.config.loader import load_config
from src.config.settings import Settings
from src.models.analysis import DomainExpert
from src.models.session import NeedType


class TestSettings:
    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        s = Settings(_env_file=None)
        assert s.interactive_threshold == 0.85
        assert s.stage_max_attempts == 3
        assert s.evaluation_concurrency == 3
        assert s.get_available_vision_providers() == []

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("INTERACTIVE_THRESHOLD", "0.9")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        s = Settings(_env_file=None)
        assert s.interactive_threshold == 0.9
        assert s.get_available_vision_providers() == ["openai"]

    def test_provider_priority(self) -> None:
        s = Settings(_env_file=None, openai_api_key="sk", anthropic_api_key="ant")
        assert s.get_available_vision_providers() == ["anthropic", "openai"]


class TestLoadConfig:
    def test_yaml_merged_with_settings(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "pipeline:\n"
            "  domain_ceilings: {silver: 0.8}\n"
            "interactive:\n"
            "  threshold: 0.5\n"
            "  note: kept\n",
            encoding="utf-8",
        )
        settings = Settings(_env_file=None, interactive_threshold=0.88, stage_max_attempts=4)

        config = load_config(str(path), settings=settings)

        assert config["pipeline"]["domain_ceilings"] == {"silver": 0.8}
        assert config["interactive"]["threshold"] == 0.88
        assert config["interactive"]["note"] == "kept"
        assert config["retry"]["max_attempts"] == 4
        assert config["logging"]["level"] == "INFO"

    def test_missing_file_gives_settings_only(self, tmp_path) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), settings=Settings(_env_file=None))
        assert "pipeline" not in config
        assert config["evaluation"]["concurrency"] == 3

    def test_packaged_config(self) -> None:
        config = load_config("config/config.yaml", settings=Settings(_env_file=None))
        assert config["pipeline"]["degraded_stage_penalty"] == 0.8
        assert config["escalation"]["premium_value_threshold"] == 5000


class TestDomainPolicy:
    def test_progress_bands_are_contiguous(self) -> None:
        bands = [STAGE_PROGRESS[stage] for stage in STAGE_ORDER]
        for (_, end), (start, _) in zip(bands, bands[1:]):
            assert end == start

    def test_confidence_ceiling(self) -> None:
        assert confidence_ceiling(DomainExpert.FURNITURE) == 0.95
        assert confidence_ceiling(DomainExpert.GENERAL) == 0.85
        assert confidence_ceiling(DomainExpert.SILVER, {"silver": 0.7}) == 0.7
        assert confidence_ceiling(DomainExpert.GLASS, {"silver": 0.7}) == 0.92

    def test_every_alias_maps_to_a_domain(self) -> None:
        assert all(isinstance(d, DomainExpert) for d in DOMAIN_ALIASES.values())
        assert DOMAIN_ALIASES["pottery"] == DomainExpert.CERAMICS

    def test_photo_request_fallback(self) -> None:
        fallback = "A photo, please."
        assert photo_request(DomainExpert.TOYS, NeedType.QUESTION_PROVENANCE, fallback) == fallback
        assert photo_request(DomainExpert.TOYS, NeedType.PHOTO_MARKS, fallback).startswith(
            "Manufacturer marks"
        )

    def test_quick_questions(self) -> None:
        assert "What hallmarks can you identify?" in quick_questions_for(DomainExpert.SILVER)
        generic = quick_questions_for(DomainExpert.VEHICLES)
        assert generic[0] == "Are there any marks or labels you can see?"
        generic.append("mutated")
        assert "mutated" not in quick_questions_for(DomainExpert.VEHICLES)
