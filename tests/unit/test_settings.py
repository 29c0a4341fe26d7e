"""
Unit tests for configuration loading.
"""

import tomllib
from pathlib import Path

import pytest

from quote_studio.settings import Settings, GlobalConfig, app_home, HOME_ENV_VAR
from quote_studio.pricing import PriceBook
from quote_studio.error_handler import ConfigurationError


@pytest.mark.unit
class TestSettings:

    def test_home_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv(HOME_ENV_VAR, str(tmp_path))
        assert app_home() == tmp_path

    def test_default_home(self, monkeypatch):
        monkeypatch.delenv(HOME_ENV_VAR, raising=False)
        assert app_home() == Path.home() / ".quote-studio"

    def test_singleton_writes_defaults(self):
        settings = Settings()

        assert Settings() is settings
        assert settings.config_path.exists()
        assert isinstance(settings.global_config, GlobalConfig)

    def test_merge_sections(self):
        config = Settings()._merge_config({
            "llm": {"model": "llama3", "structurer": "llm"},
            "paths": {"root": "~/quotes"},
            "store": {"backend": "memory", "allocation_max_attempts": 9},
            "export": {"render_timeout": 5},
            "similarity": {"backend": "memory", "default_limit": 3},
            "pricing": {"vat_rate": 0.05, "series_base": {"G2": 1}},
        })

        assert config.llm_model == "llama3"
        assert config.structurer == "llm"
        assert config.data_root == Path("~/quotes").expanduser()
        assert config.store_backend == "memory"
        assert config.allocation_max_attempts == 9
        assert config.render_timeout == 5
        assert config.similarity_default_limit == 3
        assert config.pricing.vat_rate == 0.05
        assert config.pricing.series_base["G2"] == 1
        assert config.pricing.series_base["G3"] == PriceBook().series_base["G3"]
        assert config.embeddings_model == GlobalConfig().embeddings_model

    def test_invalid_pricing_rejected(self):
        with pytest.raises(ConfigurationError):
            Settings()._merge_config({"pricing": {"vat_rate": 2}})

    def test_saved_file_round_trips(self):
        settings = Settings()
        settings._save_global_config()

        with open(settings.config_path, "rb") as f:
            data = tomllib.load(f)
        reloaded = settings._merge_config(data)

        assert reloaded.pricing == settings.global_config.pricing
        assert reloaded.store_backend == settings.global_config.store_backend
        assert reloaded.browser_path == settings.global_config.browser_path

    def test_update_global_config(self):
        settings = Settings()
        original = settings.global_config.render_timeout
        try:
            settings.update_global_config(render_timeout=12.5, not_a_field=1)
            assert settings.global_config.render_timeout == 12.5
            assert not hasattr(settings.global_config, "not_a_field")
        finally:
            settings.update_global_config(render_timeout=original)
