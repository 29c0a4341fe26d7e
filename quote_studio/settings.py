"""
Configuration management for Quote Studio.

Handles global configuration loading from TOML files, environment variable
integration for the application home, and validation with defaults. The
price book (series base prices, surcharges, VAT rate) is configuration data
and lives in the ``[pricing]`` section.
"""

from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
import tomllib
import os

from .pricing import PriceBook

HOME_ENV_VAR = "QUOTE_STUDIO_HOME"


def app_home() -> Path:
    """Directory holding config.toml, logs and the default database."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".quote-studio"


@dataclass
class GlobalConfig:
    """Global application configuration."""

    llm_provider: str = "ollama"
    llm_model: str = "gpt-oss:20b"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 900
    ollama_base_url: str = "http://localhost:11434"

    embeddings_provider: str = "ollama"
    embeddings_model: str = "nomic-embed-text"

    # keyword | llm
    structurer: str = "keyword"

    data_root: Path = Path.home() / "QuoteStudio"

    # sqlite | memory
    store_backend: str = "sqlite"
    store_busy_timeout: float = 5.0
    allocation_max_attempts: int = 5

    browser_path: str = "chromium"
    render_timeout: float = 60.0
    embedding_timeout: float = 30.0

    # chroma | memory
    similarity_backend: str = "chroma"
    similarity_default_limit: int = 5

    pricing: PriceBook = field(default_factory=PriceBook)


class Settings:
    """Settings management singleton."""

    _instance: Optional['Settings'] = None
    _global_config: GlobalConfig
    _config_path: Path

    def __new__(cls) -> 'Settings':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        """Initialize settings from configuration files."""
        self._config_path = app_home() / "config.toml"
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._load_global_config()

    def _load_global_config(self) -> None:
        """Load global configuration with defaults."""
        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    config_data = tomllib.load(f)
                self._global_config = self._merge_config(config_data)
            except (OSError, tomllib.TOMLDecodeError) as e:
                print(f"Warning: Failed to load config from {self._config_path}: {e}")
                self._global_config = GlobalConfig()
        else:
            self._global_config = GlobalConfig()
            self._save_global_config()

    def _merge_config(self, config_data: Dict[str, Any]) -> GlobalConfig:
        """Merge configuration data with defaults."""
        config = GlobalConfig()

        if "llm" in config_data:
            llm_config = config_data["llm"]
            config.llm_provider = llm_config.get("provider", config.llm_provider)
            config.llm_model = llm_config.get("model", config.llm_model)
            config.llm_temperature = llm_config.get("temperature", config.llm_temperature)
            config.llm_max_tokens = llm_config.get("max_tokens", config.llm_max_tokens)
            config.ollama_base_url = llm_config.get("base_url", config.ollama_base_url)
            config.structurer = llm_config.get("structurer", config.structurer)

        if "embeddings" in config_data:
            embed_config = config_data["embeddings"]
            config.embeddings_provider = embed_config.get("provider", config.embeddings_provider)
            config.embeddings_model = embed_config.get("model", config.embeddings_model)

        if "paths" in config_data:
            paths_config = config_data["paths"]
            if "root" in paths_config:
                config.data_root = Path(paths_config["root"]).expanduser()

        if "store" in config_data:
            store_config = config_data["store"]
            config.store_backend = store_config.get("backend", config.store_backend)
            config.store_busy_timeout = store_config.get("busy_timeout", config.store_busy_timeout)
            config.allocation_max_attempts = store_config.get(
                "allocation_max_attempts", config.allocation_max_attempts
            )

        if "export" in config_data:
            export_config = config_data["export"]
            config.browser_path = export_config.get("browser_path", config.browser_path)
            config.render_timeout = export_config.get("render_timeout", config.render_timeout)
            config.embedding_timeout = export_config.get("embedding_timeout", config.embedding_timeout)

        if "similarity" in config_data:
            similarity_config = config_data["similarity"]
            config.similarity_backend = similarity_config.get("backend", config.similarity_backend)
            config.similarity_default_limit = similarity_config.get("default_limit", config.similarity_default_limit)

        if "pricing" in config_data:
            config.pricing = PriceBook.from_dict(config_data["pricing"])

        return config

    def _save_global_config(self) -> None:
        """Save current global configuration to TOML file."""
        config = self._global_config
        config_toml = f"""[llm]
provider = "{config.llm_provider}"
model = "{config.llm_model}"
temperature = {config.llm_temperature}
max_tokens = {config.llm_max_tokens}
base_url = "{config.ollama_base_url}"
structurer = "{config.structurer}"

[embeddings]
provider = "{config.embeddings_provider}"
model = "{config.embeddings_model}"

[paths]
root = "{config.data_root}"

[store]
backend = "{config.store_backend}"
busy_timeout = {config.store_busy_timeout}
allocation_max_attempts = {config.allocation_max_attempts}

[export]
browser_path = "{config.browser_path}"
render_timeout = {config.render_timeout}
embedding_timeout = {config.embedding_timeout}

[similarity]
backend = "{config.similarity_backend}"
default_limit = {config.similarity_default_limit}

{config.pricing.to_toml()}"""

        with open(self._config_path, "w", encoding="utf-8") as f:
            f.write(config_toml)

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    def update_global_config(self, **kwargs) -> None:
        """Update global configuration values."""
        for key, value in kwargs.items():
            if hasattr(self._global_config, key):
                setattr(self._global_config, key, value)
        self._save_global_config()


# Global settings instance
settings = Settings()
