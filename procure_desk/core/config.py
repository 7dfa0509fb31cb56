from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("procure-desk", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Remote procurement REST API
    procurement_api_url: str = Field("http://localhost:8000", alias="PROCUREMENT_API_URL")
    procurement_api_timeout: float = Field(10.0, alias="PROCUREMENT_API_TIMEOUT")
    token_refresh_path: str = Field("/api/auth/token/refresh/", alias="TOKEN_REFRESH_PATH")

    # CORS allowed origins (comma-separated list)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Approval authorization fallback (mirrors server policy, server hint wins)
    approval_level_two_threshold: float = Field(1000.0, alias="APPROVAL_LEVEL_TWO_THRESHOLD")

    # Document upload limits
    upload_max_bytes: int = Field(10 * 1024 * 1024, alias="UPLOAD_MAX_BYTES")
    upload_allowed_types: str = Field(
        "application/pdf,image/jpeg,image/jpg,image/png", alias="UPLOAD_ALLOWED_TYPES"
    )  # Comma-separated MIME types

    # Extraction job polling
    poll_interval_seconds: float = Field(3.0, alias="POLL_INTERVAL_SECONDS")
    poll_max_interval_seconds: float = Field(8.0, alias="POLL_MAX_INTERVAL_SECONDS")
    poll_backoff_after: int = Field(10, alias="POLL_BACKOFF_AFTER")
    poll_backoff_factor: float = Field(1.1, alias="POLL_BACKOFF_FACTOR")
    poll_max_attempts_proforma: int = Field(30, alias="POLL_MAX_ATTEMPTS_PROFORMA")
    poll_max_attempts_receipt: int = Field(40, alias="POLL_MAX_ATTEMPTS_RECEIPT")
    poll_max_transport_errors: int = Field(5, alias="POLL_MAX_TRANSPORT_ERRORS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}

settings = Settings()
