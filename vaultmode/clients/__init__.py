"""Vault API client."""

from vaultmode.clients.vault import VaultClient, split_kv_path

__all__ = ["VaultClient", "split_kv_path"]
