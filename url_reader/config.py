"""Configuration management using Pydantic Settings."""

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class BitbucketServerIntegrationSettings(BaseModel):
    """Bitbucket Server instance configuration."""

    host: str = Field(
        ...,
        description="Host (and optional port) of the instance, e.g. bitbucket.example.com",
    )
    api_base_url: str | None = Field(
        default=None,
        description="REST API base URL (defaults to https://<host>/rest/api/1.0)",
    )
    token: SecretStr | None = Field(
        default=None,
        description="Personal access token, sent as Bearer token",
    )
    username: str | None = Field(
        default=None,
        description="Username for HTTP Basic auth (used when no token is set)",
    )
    password: SecretStr | None = Field(
        default=None,
        description="Password for HTTP Basic auth (used when no token is set)",
    )

    @field_validator("host")
    @classmethod
    def _validate_host(cls, value: str) -> str:
        if not value or "/" in value:
            msg = f"Invalid Bitbucket Server host (expected host[:port]): {value!r}"
            raise ValueError(msg)
        return value


class IntegrationsSettings(BaseModel):
    """Source control integrations by type."""

    bitbucket_server: list[BitbucketServerIntegrationSettings] = Field(
        default_factory=list,
        description="Bitbucket Server instances",
    )


class Settings(BaseSettings):
    """Application settings from environment variables and config files."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="URL_READER_",
        env_nested_delimiter="__",
        json_file=".env.json",
        json_file_encoding="utf-8",
        yaml_file=".env.yaml",
        yaml_file_encoding="utf-8",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            file_secret_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            YamlConfigSettingsSource(settings_cls),
        )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format_json: bool = Field(
        default=True,
        description="Use JSON logging format (False for human-readable logs in development)",
    )
    log_exclude_loggers: str = Field(
        default="httpx,httpcore",
        description="Comma-separated list of logger names to exclude from DEBUG logging",
    )

    # HTTP
    http_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for requests to source control hosts",
    )

    # Tree responses
    spool_max_size: int = Field(
        default=10 * 1024 * 1024,
        description="Archive bytes kept in memory before spooling to disk",
    )

    integrations: IntegrationsSettings = Field(
        default_factory=IntegrationsSettings,
        description="Source control integrations",
    )
