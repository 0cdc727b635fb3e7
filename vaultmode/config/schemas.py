"""
Configuration schemas for vaultmode.

This module defines Pydantic models for:
- Project settings (.vaultmode.yaml)
- Mode configuration (data/vault-mode.conf)
- Unseal key material (data/vault-unseal-keys.json)
- Backup metadata and entries (data/vault-backups/<timestamp>/)
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vaultmode.types import VaultMode

EPHEMERAL_COMMAND = "server -dev -dev-root-token-id=root -dev-listen-address=0.0.0.0:8200"
DURABLE_COMMAND = "server -config=/vault/config/vault-persistent.hcl"


class VaultModeSettings(BaseModel):
    """
    Project settings (.vaultmode.yaml).

    Example:
    -------
        vault_addr: http://localhost:8200
        data_dir: .devcontainer/data
        compose_file: .devcontainer/docker-compose.dev.yml
        service_name: vault-dev
        namespaces:
          - secret/dev
          - secret/test
        auto_unseal_default: false

    """

    vault_addr: Annotated[str, Field(description="Vault API address (without /v1)")] = "http://localhost:8200"
    vault_token: Annotated[
        str | None, Field(description="Pre-supplied administrative token (VAULT_TOKEN)")
    ] = None

    data_dir: Annotated[Path, Field(description="Directory holding mode file, keys, raft data and backups")] = Path(
        ".devcontainer/data"
    )
    compose_file: Annotated[Path, Field(description="Docker Compose file defining the Vault service")] = Path(
        ".devcontainer/docker-compose.dev.yml"
    )
    service_name: Annotated[str, Field(description="Compose service name of the Vault container")] = "vault-dev"

    namespaces: Annotated[
        list[str],
        Field(description="Secret namespaces enumerated for backups (KV v2 mount 'secret')"),
    ] = ["secret/dev", "secret/test", "secret/ci", "secret/prod"]

    ephemeral_root_token: str = "root"
    ephemeral_command: str = EPHEMERAL_COMMAND
    durable_command: str = DURABLE_COMMAND

    key_shares: Annotated[int, Field(ge=1, le=255)] = 5
    key_threshold: Annotated[int, Field(ge=1, le=255)] = 3

    backup_retention: Annotated[int, Field(ge=1)] = 5

    health_attempts: Annotated[int, Field(ge=1, description="Max health polls after a restart")] = 30
    health_interval: Annotated[float, Field(ge=0, description="Seconds between health polls")] = 2.0
    health_backoff: Annotated[float, Field(ge=1.0, description="Interval multiplier (1.0 = fixed)")] = 1.0
    request_timeout: Annotated[float, Field(gt=0)] = 5.0

    auto_unseal_default: bool = False

    model_config = ConfigDict(extra="forbid")

    @field_validator("namespaces")
    @classmethod
    def validate_namespaces(cls, v: list[str]) -> list[str]:
        """Namespaces must live under the 'secret/' KV mount."""
        cleaned = [ns.strip("/") for ns in v]
        invalid = [ns for ns in cleaned if not ns.startswith("secret/") or ns == "secret"]
        if invalid:
            raise ValueError(f"Namespaces must be of the form 'secret/<name>': {invalid}")
        return cleaned

    @model_validator(mode="after")
    def validate_threshold(self) -> "VaultModeSettings":
        """Threshold must not exceed the number of shares."""
        if self.key_threshold > self.key_shares:
            raise ValueError(
                f"key_threshold ({self.key_threshold}) cannot exceed key_shares ({self.key_shares})"
            )
        return self

    @property
    def mode_file(self) -> Path:
        return self.data_dir / "vault-mode.conf"

    @property
    def keys_file(self) -> Path:
        return self.data_dir / "vault-unseal-keys.json"

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "vault-data" / "raft"

    @property
    def backup_root(self) -> Path:
        return self.data_dir / "vault-backups"

    def launch_command_for(self, mode: VaultMode) -> str:
        """Return the Vault server command line for a mode."""
        return self.durable_command if mode is VaultMode.DURABLE else self.ephemeral_command

    def resolve_paths(self, base: Path) -> "VaultModeSettings":
        """Return a copy with relative paths anchored at base."""
        updates: dict[str, Any] = {}
        if not self.data_dir.is_absolute():
            updates["data_dir"] = base / self.data_dir
        if not self.compose_file.is_absolute():
            updates["compose_file"] = base / self.compose_file
        return self.model_copy(update=updates)


class ModeConfiguration(BaseModel):
    """
    Declared mode configuration (vault-mode.conf).

    Example:
    -------
        MODE="durable"
        AUTO_UNSEAL="false"
        LAUNCH_COMMAND="server -config=/vault/config/vault-persistent.hcl"

    """

    mode: VaultMode = VaultMode.EPHEMERAL
    auto_unseal: bool = False
    launch_command: str = EPHEMERAL_COMMAND

    # False when the file did not exist and defaults are in use
    present: bool = Field(default=True, exclude=True)

    model_config = ConfigDict(frozen=True)


class UnsealKeySet(BaseModel):
    """
    Unseal key material written once at first durable initialization.

    The file is the raw /sys/init response plus bookkeeping fields:

        {
          "keys": ["..."],
          "keys_base64": ["..."],
          "root_token": "hvs....",
          "created_at": "2026-10-18T12:00:00+00:00",
          "secret_shares": 5,
          "secret_threshold": 3
        }

    """

    keys: Annotated[list[str], Field(min_length=1)]
    keys_base64: list[str] = Field(default_factory=list)
    root_token: Annotated[str, Field(min_length=1)]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    secret_shares: int | None = None
    secret_threshold: int = 3

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def validate_base64_matches(self) -> "UnsealKeySet":
        """When both forms are present they must describe the same shares."""
        if self.keys_base64 and len(self.keys_base64) != len(self.keys):
            raise ValueError(
                f"keys ({len(self.keys)}) and keys_base64 ({len(self.keys_base64)}) differ in length"
            )
        return self

    def shares(self) -> list[str]:
        """Return shares in submission order, base64 form preferred."""
        return list(self.keys_base64 or self.keys)

    def __repr__(self) -> str:
        """Never expose key material in reprs."""
        return (
            f"UnsealKeySet(shares={len(self.keys)}, threshold={self.secret_threshold}, "
            f"root_token='{preview_key(self.root_token)}', created_at='{self.created_at.isoformat()}')"
        )

    __str__ = __repr__


class BackupMetadata(BaseModel):
    """Backup metadata (metadata.json). Its presence marks a complete backup."""

    timestamp: datetime
    source_mode: str
    target_mode: str
    secret_count: Annotated[int, Field(ge=0)]
    vault_addr: str | None = None
    reachable: bool = True
    failed_paths: list[str] = Field(default_factory=list)
    failed_namespaces: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True if the store was reachable and every namespace and secret was read."""
        return self.reachable and not self.failed_paths and not self.failed_namespaces


class BackupEntry(BaseModel):
    """A single backed-up secret: operator path plus its key/value document."""

    path: Annotated[str, Field(min_length=1)]
    data: dict[str, Any]

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Backed-up paths are full KV paths such as secret/dev/ALPHA."""
        v = v.strip("/")
        if not v.startswith("secret/"):
            raise ValueError(f"Backup entry path must start with 'secret/': {v}")
        return v


def preview_key(value: str, visible: int = 4) -> str:
    """Return a diagnostic preview of key material (first characters only)."""
    if not value:
        return ""
    return f"{value[:visible]}..."
