from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider selection
    preferred_provider: str = "ollama"
    fallback_order: list[str] = ["local", "ollama", "anthropic", "openai", "deepseek"]

    # Cloud providers (API key required)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    deepseek_api_key: str = ""
    deepseek_model: str = "deepseek-chat"

    # Self-hosted
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    # Local in-process model
    local_model_id: str = ""  # Empty -- pick one from the ranking policy
    local_model_policy: str = "smallest"
    local_models_dir: str = "./models"

    # Requests
    request_timeout_seconds: float = 60.0
    local_request_timeout_seconds: float = 120.0
    availability_probe_timeout_seconds: float = 2.0
    probe_fallback_endpoints: bool = True

    # Scheduler
    refresh_interval_seconds: float = 5.0
    stuck_after_seconds: float = 300.0

    # Storage
    store_dir: str = ""  # Empty -- keep boards in memory

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
