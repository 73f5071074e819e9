from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "FinNova API"
    gemini_api_key: str = ""
    # chat streaming needs a model that supports streamGenerateContent.
    gemini_model: str = "gemini-2.5-flash"  # override via GEMINI_MODEL in .env if needed
    database_url: str = ""
    # Comma-separated origins for CORS. Use "*" only for demo environments.
    cors_allow_origins: str = "*"
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
