from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ESTATEOPS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "EstateOps"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    artifacts_root: Path | None = None
    imports_inbox_root: Path | None = None
    database_url: str | None = None

    max_concurrent_backups: PositiveInt = 2
    max_concurrent_restores: PositiveInt = 1
    max_concurrent_imports: PositiveInt = 2

    default_retention_days: PositiveInt = 30
    failed_job_retention_days: PositiveInt | None = None
    job_timeout_seconds: PositiveInt = 3600

    backup_export_command: str = "pg_dump --no-owner --dbname={database_url}"
    backup_restore_command: str = "psql --quiet --dbname={database_url}"
    backup_table_argument: str = "--table={table}"
    backup_source_database_url: str | None = None
    default_compression_level: int = Field(default=6, ge=0, le=9)
    command_timeout_seconds: PositiveInt = 3600
    checksum_chunk_bytes: PositiveInt = 4 * 1024 * 1024
    max_backup_size_bytes: PositiveInt = 10 * 1024 * 1024 * 1024

    import_default_batch_size: PositiveInt = 1000
    import_max_batch_size: PositiveInt = 10000
    import_large_file_warning_rows: PositiveInt = 100000
    import_max_reported_errors: PositiveInt = 500

    default_page_size: PositiveInt = 20
    max_page_size: PositiveInt = 200

    @field_validator("state_root", "artifacts_root", "imports_inbox_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path | None) -> Path | None:
        if value is None:
            return None
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        self.state_root.mkdir(parents=True, exist_ok=True)

        if self.artifacts_root is None:
            self.artifacts_root = self.state_root / "artifacts"
        self.artifacts_root = self.artifacts_root.resolve(strict=False)
        if self.state_root != self.artifacts_root and self.state_root not in self.artifacts_root.parents:
            raise ValueError("artifacts_root must be under state_root")
        self.artifacts_root.mkdir(parents=True, exist_ok=True)

        if self.imports_inbox_root is None:
            self.imports_inbox_root = self.state_root / "inbox"
        self.imports_inbox_root = self.imports_inbox_root.resolve(strict=False)
        self.imports_inbox_root.mkdir(parents=True, exist_ok=True)

        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be greater than or equal to default_page_size")

        if self.import_max_batch_size < self.import_default_batch_size:
            raise ValueError("import_max_batch_size must be >= import_default_batch_size")

        if "{database_url}" not in self.backup_export_command:
            raise ValueError("backup_export_command must reference {database_url}")
        if "{database_url}" not in self.backup_restore_command:
            raise ValueError("backup_restore_command must reference {database_url}")
        if "{table}" not in self.backup_table_argument:
            raise ValueError("backup_table_argument must reference {table}")

        self.log_level = self.log_level.upper().strip()
        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "estateops.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"

    @property
    def effective_backup_source_url(self) -> str:
        return self.backup_source_database_url or self.effective_database_url

    @property
    def resolved_artifacts_root(self) -> Path:
        assert self.artifacts_root is not None
        return self.artifacts_root

    @property
    def resolved_inbox_root(self) -> Path:
        assert self.imports_inbox_root is not None
        return self.imports_inbox_root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
