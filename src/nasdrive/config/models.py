"""Configuration models describing nasdrive settings."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class NasdriveBaseModel(BaseModel):
    """Shared configuration for nasdrive Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class StorageSettings(NasdriveBaseModel):
    """Where the store lives on disk.

    Attributes:
        root: Directory exposed as the store root.
        system_dirname: Metadata directory (tags, trash index, quarantine) under the root.
        reserved_prefix: Name prefix hidden from listings; also used for staging files.
    """

    root: str = "./drive-root"
    system_dirname: str = ".fm_system"
    reserved_prefix: str = Field(default=".", min_length=1)


class TrashSettings(NasdriveBaseModel):
    """Soft-delete behavior.

    Attributes:
        retention_days: Age after which trashed entries are purged on listing.
        max_conflict_attempts: Bound on ``" (n)"`` suffixes tried during restore.
    """

    retention_days: int = Field(default=30, ge=0)
    max_conflict_attempts: int = Field(default=1000, ge=1)


class UploadSettings(NasdriveBaseModel):
    """Upload pipeline tuning.

    Attributes:
        chunk_threshold_bytes: Payloads above this size are sent in chunks.
        chunk_size_bytes: Size of each chunk.
        concurrency: Number of uploads in flight at once.
        max_retries: Retries per transfer after the first attempt.
        backoff_base_seconds: Delay before the first retry, doubled each time.
        backoff_max_seconds: Upper bound on one backoff delay.
    """

    chunk_threshold_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    chunk_size_bytes: int = Field(default=5 * 1024 * 1024, ge=1)
    concurrency: int = Field(default=3, ge=1)
    max_retries: int = Field(default=3, ge=0)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)


class LoggingSettings(NasdriveBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
    """

    level: str = "WARNING"


class CLIOptions(NasdriveBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
    """

    quiet_default: bool = False


class NasdriveConfig(NasdriveBaseModel):
    """Top-level configuration struct for nasdrive."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    trash: TrashSettings = Field(default_factory=TrashSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "NasdriveBaseModel",
    "StorageSettings",
    "TrashSettings",
    "UploadSettings",
    "LoggingSettings",
    "CLIOptions",
    "NasdriveConfig",
]
