"""
Runtime configuration.

Settings are read from an optional YAML file and then overlaid with
environment variables (DB_HOST, DB_PASSWORD, FORCAM_ROOT, ...). Any problem
is raised as FatalConfigurationError before ingestion starts.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from forcam_ingest.core.errors import FatalConfigurationError


class DatabaseSettings(BaseModel):
    host: str = "localhost"
    port: int = Field(5432, gt=0, lt=65536)
    database: str = "forcam"
    user: str = "forcam_ingest"
    password: str | None = None
    min_size: int = Field(2, ge=1)
    max_size: int = Field(10, ge=1)
    timeout: float = Field(30.0, gt=0)
    connect_max_attempts: int = Field(3, ge=1)
    connect_base_delay_seconds: float = Field(2.0, ge=0)

    @model_validator(mode="after")
    def check_pool_bounds(self) -> "DatabaseSettings":
        if self.min_size > self.max_size:
            raise ValueError("database.min_size must not exceed database.max_size")
        return self


class FileSettings(BaseModel):
    root: Path | None = None
    extensions: list[str] = Field(default_factory=lambda: [".csv", ".json"])
    csv_has_header: bool = True
    csv_delimiter: str = Field(",", min_length=1, max_length=1)
    encoding: str = "utf-8-sig"
    backup_dir_name: str = "Backup"
    error_dir_name: str = "Error"
    file_unlock_retries: int = Field(10, ge=1)
    file_unlock_wait_seconds: float = Field(3.0, ge=0)
    max_workers: int = Field(4, ge=1)
    watch: bool = False
    settle_delay_seconds: float = Field(2.0, ge=0)
    rescan_on_event: bool = False

    @model_validator(mode="after")
    def normalize_extensions(self) -> "FileSettings":
        self.extensions = [
            (ext if ext.startswith(".") else f".{ext}").lower() for ext in self.extensions
        ]
        return self


class ApiEndpoint(BaseModel):
    path: str = Field(..., min_length=1)
    page_size: int | None = Field(None, ge=1)
    params: dict[str, Any] = Field(default_factory=dict)


class ApiSettings(BaseModel):
    base_url: str | None = None
    token: str | None = None
    auth_header: str = "Authorization"
    auth_scheme: str | None = "Bearer"
    endpoints: list[ApiEndpoint] = Field(default_factory=list)
    timeout: float = Field(30.0, gt=0)
    verify_tls: bool = True
    page_param: str = "page"
    page_size_param: str = "pageSize"
    cursor_param: str = "pageToken"
    max_pages: int = Field(10_000, ge=1)
    fetch_max_attempts: int = Field(3, ge=1)
    fetch_base_delay_seconds: float = Field(2.0, ge=0)

    @model_validator(mode="after")
    def check_credentials(self) -> "ApiSettings":
        if self.endpoints and not self.base_url:
            raise ValueError("api.base_url is required when api.endpoints are configured")
        if self.endpoints and not self.token:
            raise ValueError("api.token is required when api.endpoints are configured")
        return self


class LoadSettings(BaseModel):
    round_cycle_time: bool = True
    decimal_places: int = Field(6, ge=0, le=12)
    max_row_failures: int = Field(50, ge=0)
    load_max_attempts: int = Field(3, ge=1)
    load_base_delay_seconds: float = Field(5.0, ge=0)
    move_max_attempts: int = Field(3, ge=1)
    move_base_delay_seconds: float = Field(1.0, ge=0)
    error_sample_limit: int = Field(20, ge=0)


class ObservabilitySettings(BaseModel):
    log_level: str = "INFO"
    log_format: str = Field("json", pattern="^(json|text)$")
    metrics_port: int | None = Field(None, gt=0, lt=65536)
    alert_failure_threshold: int = Field(10, ge=1)
    alert_webhook_url: str | None = None


class IngestSettings(BaseModel):
    """Top-level settings for one ingestion process."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    files: FileSettings = Field(default_factory=FileSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    load: LoadSettings = Field(default_factory=LoadSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def require_database(self) -> None:
        """
        Ensure the store can be reached with explicit credentials.

        Raises:
            FatalConfigurationError: If the database password is missing
        """
        if not self.database.password:
            raise FatalConfigurationError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or database.password in the config file."
            )

    def require_file_root(self) -> Path:
        """
        Return the drop-file root.

        Raises:
            FatalConfigurationError: If the root is unset or not a directory
        """
        root = self.files.root
        if root is None:
            raise FatalConfigurationError("files.root (or FORCAM_ROOT) must be set for file ingestion")
        if not root.is_dir():
            raise FatalConfigurationError(f"files.root is not a directory: {root}")
        return root


# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "database"),
    "DB_USER": ("database", "user"),
    "DB_PASSWORD": ("database", "password"),
    "FORCAM_ROOT": ("files", "root"),
    "FORCAM_MAX_WORKERS": ("files", "max_workers"),
    "FORCAM_API_BASE_URL": ("api", "base_url"),
    "FORCAM_API_TOKEN": ("api", "token"),
    "LOG_LEVEL": ("observability", "log_level"),
    "METRICS_PORT": ("observability", "metrics_port"),
    "ALERT_WEBHOOK_URL": ("observability", "alert_webhook_url"),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FatalConfigurationError(f"Configuration file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise FatalConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise FatalConfigurationError(f"Configuration file must contain a mapping: {path}")
    return config


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> IngestSettings:
    """
    Load settings from YAML and environment variables.

    Args:
        path: Optional YAML file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated IngestSettings

    Raises:
        FatalConfigurationError: If the file is unreadable or a value is invalid
    """
    environ = os.environ if environ is None else environ
    raw: dict[str, Any] = _read_yaml(Path(path)) if path else {}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        section_values = raw.setdefault(section, {})
        if not isinstance(section_values, dict):
            raise FatalConfigurationError(f"Configuration section '{section}' must be a mapping")
        section_values[key] = value

    try:
        return IngestSettings.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
        )
        raise FatalConfigurationError(f"Invalid configuration: {problems}") from e
