"""Tests for pipeline_config.py - defaults and environment overrides."""

import dataclasses

import pytest

from pipeline_config import DEFAULT_CONFIG, PipelineConfig


class TestDefaults:
    def test_values(self):
        assert DEFAULT_CONFIG.cache_ttl_seconds == 300.0
        assert DEFAULT_CONFIG.lookup_timeout_seconds == 5.0
        assert DEFAULT_CONFIG.scorer_concurrency == 3
        assert DEFAULT_CONFIG.max_street_view_images == 10
        assert DEFAULT_CONFIG.max_walk_bike_km == 30.0

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_CONFIG.scorer_concurrency = 5

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            PipelineConfig(scorer_concurrency=0)


class TestFromEnv:
    def test_overrides(self):
        config = PipelineConfig.from_env({
            "SAFEROUTE_CACHE_TTL_SECONDS": "60",
            "SAFEROUTE_SCORER_CONCURRENCY": "5",
            "SAFEROUTE_GEMINI_MODEL": "gemini-2.0-flash",
        })
        assert config.cache_ttl_seconds == 60.0
        assert config.scorer_concurrency == 5
        assert config.gemini_model == "gemini-2.0-flash"
        assert config.max_street_view_images == 10

    def test_invalid_value_ignored(self, caplog):
        config = PipelineConfig.from_env({"SAFEROUTE_SCORER_CONCURRENCY": "lots"})
        assert config.scorer_concurrency == 3
        assert "SAFEROUTE_SCORER_CONCURRENCY" in caplog.text

    def test_empty_env(self):
        assert PipelineConfig.from_env({}) == PipelineConfig()
