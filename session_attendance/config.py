"""Application configuration using Pydantic Settings."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Session Attendance"
    debug: bool = False

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "attendance"

    # JWT (tokens are issued by the identity provider, only verified here)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    # Attendance store
    attendance_write_retries: int = 5  # re-reads allowed after a revision conflict

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in ("change-me-in-production", ""):
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        if self.attendance_write_retries < 1:
            raise ValueError("ATTENDANCE_WRITE_RETRIES must be at least 1")
        return self


settings = Settings()
