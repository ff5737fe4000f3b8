from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    database_url: str = Field(alias="DATABASE_URL")

    auth_secret: str = Field(alias="AUTH_SECRET")
    auth_secret_previous: str | None = Field(default=None, alias="AUTH_SECRET_PREVIOUS")
    auth_algorithm: str = Field(default="HS256", alias="AUTH_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    admin_emails: str | None = Field(default=None, alias="ADMIN_EMAILS")

    invoice_prefix: str = Field(default="WD", alias="INVOICE_PREFIX")
    reconcile_batch_size: int = Field(default=100, alias="RECONCILE_BATCH_SIZE")
    trial_days: int = Field(default=14, alias="TRIAL_DAYS")
    cors_allowed_origins: str | None = Field(default=None, alias="CORS_ALLOWED_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def DATABASE_URL(self) -> str:
        return self.database_url

    @property
    def AUTH_ALGORITHM(self) -> str:
        return self.auth_algorithm

    @property
    def AUTH_SECRETS_LIST(self) -> list[str]:
        secrets = [self.auth_secret]
        if self.auth_secret_previous and self.auth_secret_previous not in secrets:
            secrets.append(self.auth_secret_previous)
        return secrets

    @property
    def ADMIN_EMAILS_LIST(self) -> list[str]:
        if not self.admin_emails:
            return []
        return [e.strip().lower() for e in self.admin_emails.split(",") if e.strip()]

    @property
    def CORS_ALLOWED_ORIGINS_LIST(self) -> list[str]:
        if not self.cors_allowed_origins:
            return []
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    @field_validator("auth_secret")
    @classmethod
    def validate_auth_secret(cls, value: str) -> str:
        if not value or value == "change-me" or len(value) < 32:
            raise ValueError("AUTH_SECRET must be set and at least 32 chars long")
        return value

    @field_validator("auth_secret_previous")
    @classmethod
    def validate_auth_secret_previous(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if value == "change-me" or len(value) < 32:
            raise ValueError("AUTH_SECRET_PREVIOUS must be at least 32 chars long")
        return value

    @field_validator("reconcile_batch_size")
    @classmethod
    def validate_batch_size(cls, value: int) -> int:
        if value < 1 or value > 1000:
            raise ValueError("RECONCILE_BATCH_SIZE must be between 1 and 1000")
        return value


settings = Settings()


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # request handlers run in a threadpool
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return kwargs


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
