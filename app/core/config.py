from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Gemini: up to four interchangeable keys, rotated per minute
    gemini_api_key: str = ""
    gemini_api_key_2: str = ""
    gemini_api_key_3: str = ""
    gemini_api_key_4: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_timeout_seconds: float = 60.0  # PDFs and images need the headroom

    # Cohere
    cohere_api_key: str = ""
    cohere_model: str = "command-r-08-2024"
    cohere_timeout_seconds: float = 30.0

    # Groq
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"
    groq_timeout_seconds: float = 15.0

    # Key rotation (Gemini free tier: 15 RPM per key)
    key_quota_per_window: int = 15
    key_window_seconds: float = 60.0

    # Attachment preprocessing
    pdf_max_chars: int = 50_000
    text_max_chars: int = 3_000
    ocr_max_chars: int = 3_000
    ocr_min_chars: int = 6
    ocr_timeout_seconds: float = 20.0
    pdf_timeout_seconds: float = 30.0
    pdf_max_pages: int = 200  # pages read per PDF; later pages are skipped
    tesseract_cmd: str = ""  # empty = use tesseract from PATH

    # Guidance generation
    guidance_temperature: float = 0.7
    guidance_max_tokens: int = 4096
    adapter_retries: int = 0  # extra attempts per provider on transient errors

    # Auth: comma-separated bearer tokens; empty disables auth (demo mode)
    api_tokens: str = ""

    # Inbound rate limit for the guidance endpoint (slowapi syntax)
    guidance_rate_limit: str = "30/minute"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @property
    def gemini_api_keys(self) -> list[str]:
        """Non-empty Gemini keys in slot order."""
        slots = (self.gemini_api_key, self.gemini_api_key_2, self.gemini_api_key_3, self.gemini_api_key_4)
        return [k.strip() for k in slots if k and k.strip()]

    @property
    def api_token_set(self) -> set[str]:
        return {t.strip() for t in self.api_tokens.split(",") if t.strip()}


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if not settings.api_token_set:
            errors.append("API_TOKENS must be set in production")

    if settings.key_quota_per_window < 1:
        errors.append("KEY_QUOTA_PER_WINDOW must be at least 1")

    if settings.adapter_retries < 0:
        errors.append("ADAPTER_RETRIES must not be negative")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
