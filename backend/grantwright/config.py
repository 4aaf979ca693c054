from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Grantwright API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    store_backend: str = "supabase"  # supabase|memory
    storage_backend: str = "supabase"  # supabase|memory
    supabase_url: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_URL", "SERVICE_URL_SUPABASEKONG"),
    )
    supabase_service_role_key: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "SERVICE_SUPABASESERVICE_KEY"),
    )
    kv_table: str = "kv_store_3cb71dae"
    annex_bucket: str = "proposal-annexes"
    partner_assets_bucket: str = "partner-assets"
    bucket_file_size_limit: int = 50 * 1024 * 1024

    gemini_api_key: str = ""
    gemini_model_id: str = "gemini-2.5-flash-lite"
    agent_temperature: float = 0.4
    agent_max_output_tokens: int = 8192
    call_fetch_max_chars: int = 20000
    call_prompt_max_chars: int = 5000

    http_timeout_seconds: float = 30.0
    max_upload_file_bytes: int = 50 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
