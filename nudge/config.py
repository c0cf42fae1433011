from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from nudge.models.domain.config_domain import EngineConfig

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    # Store settings
    store_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_seconds: float = 5.0

    # Engine settings
    config_profile: str = "default"
    random_seed: int | None = None

    # =================================================================
    # DRIVER LOOP SETTINGS
    # =================================================================
    tick_interval_seconds: float = 1.0
    sweep_interval_minutes: int = 120
    stage_timeout_seconds: float = 30.0
    max_pipelines_per_tick: int = 25

    model_config = SettingsConfigDict(
        env_prefix="NUDGE_",
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def build_engine_config(self) -> EngineConfig:
        """
        Build the validated engine configuration for this environment.
        Raises SchedulingError when the profile is unknown or inconsistent.
        """
        config = EngineConfig.for_profile(self.config_profile)
        config.pipeline.stage_timeout_seconds = self.stage_timeout_seconds
        config.pipeline.max_pipelines_per_tick = self.max_pipelines_per_tick

        if self.environment == "development":
            # Faster feedback locally; production keeps the configured values
            config.pipeline.stage_timeout_seconds = min(config.pipeline.stage_timeout_seconds, 10.0)

        return config.validate_config()


settings = Settings()
