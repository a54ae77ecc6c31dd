from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    api_base_url: str = "https://api.systemsculpt.com/api/v1"
    license_key: str = ""
    generation_provider: str = "systemsculpt"
    request_timeout_seconds: int = 60
    use_input_uploads: bool = False

    default_model_id: str = "openai/gpt-5-image-mini"

    poll_interval_seconds: float = 1.0
    poll_max_interval_seconds: float = 5.0
    poll_initial_delay_seconds: float = 0.6
    poll_backoff_factor: float = 1.35
    refresh_poll_timeout_seconds: float = 8.0

    upload_max_bytes: int = 4_500_000
    input_max_dimension: int = 2048
    max_input_images: int = 4
    image_engine: str = "pillow"

    placeholder_tick_seconds: float = 0.5

    output_dir: str = "Generations"
    save_metadata_sidecar: bool = True
