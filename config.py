from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "AIP Application API"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./aip_applications.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # CRM (LeadConnector) API
    crm_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_version: str = "2021-07-28"
    crm_messages_api_version: str = "2021-04-15"
    crm_http_timeout_seconds: float = 30.0
    crm_location_id: Optional[str] = None
    crm_pipeline_id: str = "ZnZrgR1xfUXiw1K7GaJw"
    crm_pipeline_cache_ttl_seconds: int = 900
    crm_co_applicant_object_key: str = "aip_co_applicants"
    crm_email_from: Optional[str] = None

    # OAuth app credentials
    crm_client_id: str = ""
    crm_client_secret: str = ""
    crm_redirect_uri: str = "http://localhost:3005/api/oauth/callback"
    crm_install_url: str = ""
    crm_token_url: str = "https://services.leadconnectorhq.com/oauth/token"
    token_refresh_buffer_seconds: int = 300
    setup_redirect_base: str = "http://localhost:3000/setup"

    verification_code_ttl_minutes: int = 15

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
