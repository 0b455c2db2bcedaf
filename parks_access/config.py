"""Application configuration using Pydantic Settings."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Parques Access Control"
    debug: bool = False
    log_level: str = "INFO"

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "parques"
    mongodb_timeout_ms: int = 5000

    # Permission matrix storage: "mongo" or "memory"
    permissions_backend: str = "mongo"
    # Comma-separated roles whose grants cannot be edited through the API
    protected_roles: str = "super_admin"

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 30

    # Initial administrator, created at startup when a password is set
    seed_admin_email: str = "admin@parques.local"
    seed_admin_password: str = ""
    seed_admin_full_name: str = "Administrador"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    @property
    def protected_role_keys(self) -> list[str]:
        return [r.strip() for r in self.protected_roles.split(",") if r.strip()]

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in ("change-me-in-production", ""):
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        return self


settings = Settings()
