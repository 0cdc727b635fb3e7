"""vaultmode type definitions (enums)."""

from vaultmode.types.modes import VaultMode

__all__ = [
    "VaultMode",
]
