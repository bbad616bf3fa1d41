from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_name: str = "wizardflow"
    log_level: str = "INFO"

    backend_base_url: str = "http://localhost:5000"
    api_timeout_s: float = 30.0
    stream_read_timeout_s: float = 60.0

    database_url: str = "sqlite:///./wizard_state.db"

    # stream ingestion
    frame_prefix: str = "data: "
    ingest_yield_every: int = 10

    # reconnection backoff
    reconnect_base_delay_s: float = 1.0
    reconnect_max_delay_s: float = 10.0
    reconnect_max_attempts: int = 5

    # stage transitions
    auto_advance_delay_s: float = 5.0
    build_grace_delay_s: float = 1.0

    # persistence
    autosave_debounce_s: float = 1.0
    progress_debounce_s: float = 2.0
    progress_max_age_s: float = 60 * 60

    generation_timeout_s: float = 5 * 60
    history_capacity: int = 50

settings = Settings()
