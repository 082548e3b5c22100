"""
Configuration schema and loading for sluice backup runs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
import tempfile
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from sluice.core.metadata import FIXED_KEYS

# Metadata field names end up on the left of "key = value" lines.
_FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Sections whose keys are schema field names (safe to lowercase).
# metadata_fields is deliberately absent: its keys are user data.
_SCHEMA_SECTIONS = frozenset({"download", "retry", "prepare", "concurrency"})


class DownloadSettings(BaseModel):
    """Where and how to fetch backup streams from each node."""

    model_config = {"frozen": True}

    scheme: Literal["http", "https"] = Field(default="https", description="URL scheme of the backup endpoint")
    port: int = Field(default=8081, gt=0, lt=65536, description="Backup endpoint port on every node")
    path: str = Field(default="/backup", description="Request path of the backup endpoint")
    username: str | None = Field(default=None, description="HTTP basic auth user")
    password: SecretStr | None = Field(default=None, description="HTTP basic auth password")
    verify_tls: bool = Field(default=True, description="Verify the server certificate")
    ca_cert_path: Path | None = Field(default=None, description="CA bundle for server verification")
    client_cert_path: Path | None = Field(default=None, description="Client certificate for mutual TLS")
    client_key_path: Path | None = Field(default=None, description="Client private key for mutual TLS")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Connect/read timeout per request")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v

    @model_validator(mode="after")
    def validate_client_cert_pair(self) -> "DownloadSettings":
        if (self.client_cert_path is None) != (self.client_key_path is None):
            raise ValueError("client_cert_path and client_key_path must be set together")
        return self


class RetrySettings(BaseModel):
    """Retry behavior for establishing download connections."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Maximum connection attempts")
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")


class PrepareSettings(BaseModel):
    """External preparation command run against each staged backup."""

    model_config = {"frozen": True}

    command: list[str] = Field(
        default_factory=lambda: ["xtrabackup", "--prepare"],
        min_length=1,
        description="Command and leading arguments",
    )
    target_dir_flag: str = Field(
        default="--target-dir",
        description="Flag used to pass the staging directory (rendered as FLAG=DIR)",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Kill the command after this many seconds (None = wait forever)",
    )


class ConcurrencySettings(BaseModel):
    """Node job scheduling. max_workers=1 processes nodes strictly in order."""

    model_config = {"frozen": True}

    max_workers: int = Field(default=1, gt=0, description="Node jobs run at the same time")


class SluiceSettings(BaseModel):
    """Top-level configuration for a backup run.

    This is the single source of truth for a run. All settings are
    validated and frozen after construction.
    """

    model_config = {"frozen": True}

    nodes: list[str] = Field(
        min_length=1,
        description="Node addresses, in order; position is the node index",
    )
    output_dir: Path = Field(description="Directory receiving promoted artifacts")
    staging_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Parent of per-node staging directories",
    )
    symmetric_key: SecretStr | None = Field(
        default=None,
        description="Passphrase for artifact encryption (never logged)",
    )
    encryption_enabled: bool = Field(default=True, description="Encrypt archives")
    metadata_fields: dict[str, str] = Field(
        default_factory=dict,
        description="Extra key = value lines appended to every metadata file",
    )
    artifact_prefix: str = Field(default="mysql-backup", description="Leading part of artifact names")

    download: DownloadSettings = Field(default_factory=DownloadSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    prepare: PrepareSettings = Field(default_factory=PrepareSettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[str]) -> list[str]:
        stripped = [node.strip() for node in v]
        if any(not node for node in stripped):
            raise ValueError("node addresses must not be blank")
        duplicates = sorted({node for node in stripped if stripped.count(node) > 1})
        if duplicates:
            raise ValueError(f"duplicate node addresses: {duplicates}")
        return stripped

    @field_validator("metadata_fields", mode="before")
    @classmethod
    def coerce_metadata_values(cls, v: Any) -> Any:
        # YAML turns Y/yes/1 into bools/ints; metadata is text.
        if isinstance(v, dict):
            return {str(k): (str(val).lower() if isinstance(val, bool) else str(val)) for k, val in v.items()}
        return v

    @field_validator("metadata_fields")
    @classmethod
    def validate_metadata_fields(cls, v: dict[str, str]) -> dict[str, str]:
        for name, value in v.items():
            if not _FIELD_NAME_PATTERN.match(name):
                raise ValueError(f"metadata field name {name!r} must match {_FIELD_NAME_PATTERN.pattern}")
            if name in FIXED_KEYS:
                raise ValueError(f"metadata field {name!r} collides with a built-in metadata key")
            if "\n" in value or "\r" in value:
                raise ValueError(f"metadata field {name!r} value must be a single line")
        return v

    @field_validator("artifact_prefix")
    @classmethod
    def validate_artifact_prefix(cls, v: str) -> str:
        if not v or "/" in v or v.startswith("."):
            raise ValueError("artifact_prefix must be a non-empty file name part not starting with '.'")
        return v

    @model_validator(mode="after")
    def validate_key_when_encrypting(self) -> "SluiceSettings":
        if self.encryption_enabled and (self.symmetric_key is None or not self.symmetric_key.get_secret_value()):
            raise ValueError("symmetric_key is required when encryption_enabled is true")
        return self


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # No env var and no default - keep original (validation will likely reject it)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Lowercase top-level keys and the keys of schema sections.

    Dynaconf upper-cases top-level keys and keeps env-var overrides of
    nested keys upper-case too.
    """
    normalized: dict[str, Any] = {}
    for key, value in raw.items():
        name = key.lower()
        if name in _SCHEMA_SECTIONS and isinstance(value, dict):
            value = {k.lower(): v for k, v in value.items()}
        normalized[name] = value
    return normalized


def load_settings(config_path: Path) -> SluiceSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (SLUICE_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: SLUICE_DOWNLOAD__PORT for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated SluiceSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="SLUICE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _normalize_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return SluiceSettings(**raw_config)


def describe_settings(settings: SluiceSettings) -> dict[str, Any]:
    """Settings as a JSON-safe dict for logs and `sluice validate`.

    Secrets are masked; the returned dict is safe to print.
    """
    # SecretStr dumps as "**********" in json mode
    return settings.model_dump(mode="json")
