"""Tests for configuration loading and environment overrides."""

import json
from typing import List, Optional

import pytest

from k8s_recommender.config.config import Config
from k8s_recommender.utils.exceptions import ConfigError


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.DISCOVERY_MAX_WORKERS == 8
        assert config.SESSION_STORE == "memory"
        assert config.llm_config["provider"] == "openai"

    def test_overrides(self):
        config = Config({"RANKING_MAX_SOLUTIONS": 2})
        assert config.RANKING_MAX_SOLUTIONS == 2
        assert config.ranking_max_solutions == 2

    def test_environment_wins(self, monkeypatch):
        monkeypatch.setenv("DISCOVERY_MAX_WORKERS", "3")
        monkeypatch.setenv("LOG_TO_FILE", "yes")
        config = Config({"DISCOVERY_MAX_WORKERS": 16})
        assert config.DISCOVERY_MAX_WORKERS == 3
        assert config.LOG_TO_FILE is True

    def test_grouped_views(self):
        config = Config({"ORACLE_MAX_ATTEMPTS": 5, "RANKING_MIN_SCORE": 0.3})
        assert config.oracle_retry_config["max_attempts"] == 5
        assert config.ranking_config["min_score"] == 0.3

    def test_set_llm_config(self):
        config = Config()
        config.set_llm_config({"provider": "anthropic", "model": "claude-test"})
        assert config.get_llm_config()["provider"] == "anthropic"
        assert config.get_llm_config()["model"] == "claude-test"

    def test_unknown_key(self):
        with pytest.raises(AttributeError):
            Config().NOT_A_SETTING


class TestConvertEnvValue:
    def test_scalars(self):
        assert Config.convert_env_value("X", "4", int) == 4
        assert Config.convert_env_value("X", "0.5", float) == 0.5
        assert Config.convert_env_value("X", "off", bool) is False

    def test_optional_and_list(self):
        assert Config.convert_env_value("X", "none", Optional[int]) is None
        assert Config.convert_env_value("X", '["a"]', List[str]) == ["a"]

    def test_invalid(self):
        with pytest.raises(ConfigError):
            Config.convert_env_value("X", "many", int)


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        assert Config.load_config(str(tmp_path / "missing.json")) == {}

    def test_json_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"SESSION_STORE": "file"}))
        assert Config.load_config(str(path)) == {"SESSION_STORE": "file"}

    def test_rejects_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            Config.load_config(str(path))
