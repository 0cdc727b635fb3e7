"""
Configuration for vaultmode.

- Project settings (.vaultmode.yaml + VAULT_ADDR/VAULT_TOKEN)
- Declared mode configuration (vault-mode.conf)
- Schemas for key material and backups
"""

from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import (
    BackupEntry,
    BackupMetadata,
    ModeConfiguration,
    UnsealKeySet,
    VaultModeSettings,
    preview_key,
)
from vaultmode.config.settings import find_settings_file, load_settings

__all__ = [
    "ConfigurationStore",
    "ModeConfiguration",
    "VaultModeSettings",
    "UnsealKeySet",
    "BackupMetadata",
    "BackupEntry",
    "preview_key",
    "load_settings",
    "find_settings_file",
]
