"""Vault process control."""

from vaultmode.service.compose import ComposeServiceRunner

__all__ = ["ComposeServiceRunner"]
