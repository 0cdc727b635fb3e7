"""
Vault lifecycle: mode control, migration, unsealing, validation and start-up policy.
"""

from vaultmode.lifecycle.backup import BackupRecord, BackupStore, RestoreReport
from vaultmode.lifecycle.controller import (
    CompositeStatus,
    ModeController,
    SwitchOutcome,
    SwitchResult,
    SwitchStrategy,
)
from vaultmode.lifecycle.keys import UnsealKeyStore
from vaultmode.lifecycle.migration import MigrationEngine, MigrationResult, MigrationState
from vaultmode.lifecycle.startup import StartupHook, StartupResult
from vaultmode.lifecycle.unseal import AutoUnsealAgent, UnsealOutcome, UnsealReport
from vaultmode.lifecycle.validator import CheckLevel, CheckResult, ValidationReport, Validator

__all__ = [
    "AutoUnsealAgent",
    "BackupRecord",
    "BackupStore",
    "CheckLevel",
    "CheckResult",
    "CompositeStatus",
    "MigrationEngine",
    "MigrationResult",
    "MigrationState",
    "ModeController",
    "RestoreReport",
    "StartupHook",
    "StartupResult",
    "SwitchOutcome",
    "SwitchResult",
    "SwitchStrategy",
    "UnsealKeyStore",
    "UnsealOutcome",
    "UnsealReport",
    "ValidationReport",
    "Validator",
]
