"""Environment-based configuration for the ledger gateway."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Ledger gateway settings, loaded from environment variables."""

    # Server
    PORT: int = 8787
    ALLOWED_ORIGIN: str = "*"

    # Vision provider (empty key = extraction disabled)
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_API_URL: str = "https://api.anthropic.com/v1/messages"
    ANTHROPIC_VERSION: str = "2023-06-01"
    VISION_MODEL: str = "claude-sonnet-4-20250514"
    VISION_MAX_TOKENS: int = 1024
    VISION_MAX_TOKENS_ROWS: int = 4096
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

    # Spreadsheet provider
    GOOGLE_SHEET_ID: str = ""
    GOOGLE_SERVICE_ACCOUNT_JSON: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    SHEETS_API_URL: str = "https://sheets.googleapis.com/v4/spreadsheets"
    SHEET_COLUMN_RANGE: str = "A:Z"
    TOKEN_SAFETY_MARGIN_SECONDS: int = 60

    # Tabs
    RECORDS_TAB: str = "Records"
    UPLOAD_LOG_TAB: str = "Upload Log"
    UPDATE_REQUESTS_TAB: str = "Update Requests"

    # Ledger column order for schema fields (comma-separated field names)
    FIELD_ORDER: str = "worker_name,worker_id,foreman,entry_date"

    # Outbound timeouts, no retries
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0
    UPSTREAM_CONNECT_TIMEOUT: float = 10.0

    # Default confidences when the model score is not used
    HEADER_FIELD_CONFIDENCE: float = 0.9
    WORKER_FIELD_CONFIDENCE: float = 0.85
    OPTIONAL_FIELD_CONFIDENCE: float = 0.7

    model_config = {"env_prefix": "", "case_sensitive": True}

    @property
    def field_order(self) -> list[str]:
        return [name.strip() for name in self.FIELD_ORDER.split(",") if name.strip()]


settings = Settings()
