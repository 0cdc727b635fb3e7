"""
vaultmode - local Vault lifecycle manager for development containers.

Switches a local HashiCorp Vault between two modes:
- ephemeral: in-memory dev server, unsealed on start, empty after every restart
- durable: raft storage on disk, Shamir-sealed, survives restarts

Every switch backs up secrets first, migrates them into the new store and keeps
the declared mode file consistent with what is actually running.
"""

from vaultmode.config.schemas import ModeConfiguration, VaultModeSettings
from vaultmode.config.settings import load_settings
from vaultmode.container import VaultModeContainer, create_container
from vaultmode.exceptions import (
    BackupError,
    KeyMaterialError,
    ServiceControlError,
    StoreError,
    StoreSealedError,
    StoreUnreachableError,
    VaultModeConfigurationError,
    VaultModeError,
)
from vaultmode.types import VaultMode

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("vaultmode")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

__all__ = [
    # Types
    "VaultMode",
    "ModeConfiguration",
    "VaultModeSettings",
    # Exceptions
    "VaultModeError",
    "VaultModeConfigurationError",
    "StoreError",
    "StoreUnreachableError",
    "StoreSealedError",
    "KeyMaterialError",
    "BackupError",
    "ServiceControlError",
    # Wiring
    "VaultModeContainer",
    "create_container",
    "load_settings",
    # Version
    "__version__",
]
