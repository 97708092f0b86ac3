"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: Optional[str] = None, config_dir: Optional[Path] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("engine.scheduler_tick_seconds") -> 5
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value


class YamlEngineSource(PydanticBaseSettingsSource):
    """Settings source reading the `engine:` section of the YAML config."""

    def __init__(self, settings_cls: Type[BaseSettings]):
        super().__init__(settings_cls)
        self._data: Dict[str, Any] = ConfigManager().get("engine", {}) or {}

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return {
            name: value
            for name, value in self._data.items()
            if name in self.settings_cls.model_fields and value is not None
        }


class Settings(BaseSettings):
    """Engine settings. Environment wins over config/*.yaml, which wins over defaults."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Store
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    store_timeout_seconds: int = 30

    # Rate-limit state (in-process when unset)
    redis_url: Optional[str] = None

    # Voice provider
    voice_provider: str = "vapi"
    vapi_api_key: Optional[str] = None
    vapi_base_url: str = "https://api.vapi.ai"
    default_country_code: str = "44"

    # Campaign scheduler
    scheduler_tick_seconds: float = 5.0
    settlement_seconds: int = 60

    # Sequence engine
    sequence_tick_seconds: float = 120.0
    sequence_batch_size: int = 100
    inter_step_delay_seconds: int = 30
    default_wait_hours: float = 24.0

    # Processing queue
    queue_poll_seconds: float = 60.0
    queue_batch_size: int = 5
    queue_max_attempts: int = 3
    queue_retry_backoff_minutes: int = 5
    high_priority_threshold: int = 8
    min_duration_for_analysis: int = 30

    # Provider health
    health_interval_seconds: float = 300.0
    health_timeout_seconds: float = 10.0
    degraded_threshold_ms: int = 5000
    down_after_failures: int = 3
    health_check_token: Optional[str] = None

    # Internal platform functions (sms-send, email-send, make-call, webhook-dispatch)
    internal_api_base_url: str = "http://localhost:8888/.netlify/functions"

    # AI scoring
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlEngineSource(settings_cls),
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
