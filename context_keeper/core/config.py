from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "context-keeper"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "postgresql+psycopg2://context_keeper:context_keeper@db:5432/context_keeper"

    # GitHub API
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"
    github_user_agent: str = "ContextKeeper/1.0"
    github_timeout_seconds: float = Field(default=30.0, gt=0)
    network_retry_backoff_seconds: float = Field(default=1.0, ge=0)
    server_error_retry_backoff_seconds: float = Field(default=2.0, ge=0)

    # Extraction caps per job
    pull_request_limit: int = Field(default=50, gt=0)
    issue_limit: int = Field(default=50, gt=0)
    commit_limit: int = Field(default=100, gt=0)
    fetch_commit_files: bool = False

    # Session tokens
    jwt_secret: str = ""
    jwt_expire_hours: int = Field(default=24, gt=0)


def load_settings(**overrides) -> Settings:
    """
    Builds a fresh Settings instance from the environment (and .env if present).

    Keyword overrides take precedence over the environment. The result is meant
    to be passed explicitly to the components that need it.
    """
    return Settings(**overrides)
