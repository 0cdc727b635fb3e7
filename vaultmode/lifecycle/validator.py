"""
Read-only health checks of the local Vault setup.

Each check produces a CheckResult; the report's level is the worst of them
(FAIL > WARN > PASS, INFO never counts). Nothing here creates, chmods or writes
a file: remedies are reported as commands for the operator.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from vaultmode.clients.schemas import HealthResponse
from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import ModeConfiguration, VaultModeSettings
from vaultmode.exceptions import KeyMaterialError, StoreError, StoreUnreachableError, VaultModeConfigurationError
from vaultmode.lifecycle.keys import UnsealKeyStore
from vaultmode.lifecycle.unseal import manual_unseal_instructions
from vaultmode.protocols import ClientFactory, ServiceRunner
from vaultmode.types import VaultMode
from vaultmode.utils import directory_size, format_size, which

LOGGER = logging.getLogger("vaultmode.lifecycle.validator")


class CheckLevel(str, Enum):
    PASS = "pass"
    INFO = "info"
    WARN = "warn"
    FAIL = "fail"

    @property
    def severity(self) -> int:
        return {"info": 0, "pass": 0, "warn": 1, "fail": 2}[self.value]


@dataclass
class CheckResult:
    name: str
    level: CheckLevel
    message: str
    remedy: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def level(self) -> CheckLevel:
        worst = max((check.level.severity for check in self.checks), default=0)
        return {0: CheckLevel.PASS, 1: CheckLevel.WARN, 2: CheckLevel.FAIL}[worst]

    @property
    def passed(self) -> bool:
        return self.level is not CheckLevel.FAIL

    def count(self, level: CheckLevel) -> int:
        return sum(1 for check in self.checks if check.level is level)

    def get(self, name: str) -> CheckResult | None:
        return next((check for check in self.checks if check.name == name), None)

    def names(self) -> list[str]:
        return [check.name for check in self.checks]


class Validator:
    """
    Validates configuration, storage, connectivity, seal state and key material.

    Example:
    -------
        ```python
        report = container.validator().validate()
        for check in report.checks:
            print(check.level.value, check.name, check.message)
        sys.exit(0 if report.passed else 1)
        ```

    """

    def __init__(
        self,
        settings: VaultModeSettings,
        configuration: ConfigurationStore,
        key_store: UnsealKeyStore,
        runner: ServiceRunner,
        client_factory: ClientFactory,
        cli_binary: str = "vault",
    ):
        self._settings = settings
        self._configuration = configuration
        self._key_store = key_store
        self._runner = runner
        self._client_factory = client_factory
        self._cli_binary = cli_binary

    def validate(self) -> ValidationReport:
        report = ValidationReport()
        add = report.checks.append

        add(self._check_cli())

        config, result = self._check_mode_config()
        add(result)

        if config is not None:
            add(self._check_storage_consistency(config.mode))

        health, result = self._check_connectivity()
        add(result)

        durable = config is not None and config.mode is VaultMode.DURABLE
        if durable and health is not None:
            add(self._check_seal_status(health, config))

        if durable or self._key_store.exists():
            report.checks.extend(self._check_key_material(required=durable))

        add(self._check_storage_size())

        for check in report.checks:
            log = {CheckLevel.FAIL: LOGGER.error, CheckLevel.WARN: LOGGER.warning}.get(check.level, LOGGER.debug)
            log(f"[{check.level.value.upper()}] {check.name}: {check.message}")
        return report

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_cli(self) -> CheckResult:
        path = which(self._cli_binary)
        if path:
            return CheckResult("vault-cli", CheckLevel.PASS, f"Vault CLI found: {path}")
        return CheckResult(
            "vault-cli",
            CheckLevel.INFO,
            "Vault CLI not found; checks use the HTTP API (the CLI is optional)",
        )

    def _check_mode_config(self) -> tuple[ModeConfiguration | None, CheckResult]:
        try:
            config = self._configuration.load()
        except VaultModeConfigurationError as e:
            return None, CheckResult(
                "mode-config",
                CheckLevel.FAIL,
                f"Mode file is malformed: {e}",
                [f"Fix or remove {self._configuration.path}, then: vaultmode switch <mode>"],
            )

        if not config.present:
            return config, CheckResult(
                "mode-config",
                CheckLevel.WARN,
                f"Mode file not found ({self._configuration.path}); defaults in use: {config.mode.value}",
                ["Declare a mode explicitly: vaultmode switch ephemeral"],
            )

        return config, CheckResult(
            "mode-config",
            CheckLevel.PASS,
            f"Declared mode: {config.mode.value} (auto-unseal {'on' if config.auto_unseal else 'off'})",
        )

    def _check_storage_consistency(self, mode: VaultMode) -> CheckResult:
        storage_dir = self._settings.storage_dir
        present = storage_dir.is_dir()

        if mode is VaultMode.DURABLE and not present:
            return CheckResult(
                "storage-consistency",
                CheckLevel.FAIL,
                f"Declared durable but the storage directory is missing: {storage_dir}",
                ["Restore from a backup (vaultmode backups, vaultmode rollback <dir>) or start over: vaultmode reset"],
            )
        if mode is VaultMode.EPHEMERAL and present:
            return CheckResult(
                "storage-consistency",
                CheckLevel.FAIL,
                f"Declared ephemeral but durable storage exists: {storage_dir}",
                ["Use it: vaultmode switch durable", "Or discard it: vaultmode reset"],
            )

        return CheckResult("storage-consistency", CheckLevel.PASS, f"Storage matches {mode.value} mode")

    def _check_connectivity(self) -> tuple[HealthResponse | None, CheckResult]:
        with self._client_factory(None) as client:
            try:
                health = client.health()
            except StoreUnreachableError:
                return None, CheckResult(
                    "connectivity",
                    CheckLevel.WARN,
                    f"Vault is not reachable at {client.address}",
                    [f"Start Vault: {self._runner.describe()}"],
                )
            except StoreError as e:
                return None, CheckResult("connectivity", CheckLevel.WARN, f"Unexpected health response: {e}")

        version = f" (version {health.version})" if health.version else ""
        return health, CheckResult("connectivity", CheckLevel.PASS, f"Vault is reachable at {client.address}{version}")

    def _check_seal_status(self, health: HealthResponse, config: ModeConfiguration) -> CheckResult:
        if not health.initialized:
            return CheckResult(
                "seal-status",
                CheckLevel.FAIL,
                "Durable Vault is not initialized",
                ["Initialize it through a switch: vaultmode reset && vaultmode switch durable --migrate"],
            )
        if health.sealed:
            remedy = manual_unseal_instructions(self._settings.vault_addr, self._settings.key_threshold)
            remedy.append("Or: vaultmode unseal")
            if not config.auto_unseal:
                remedy.append("Unseal on every start: vaultmode auto-unseal on")
            return CheckResult("seal-status", CheckLevel.WARN, "Vault is initialized but sealed", remedy)

        return CheckResult("seal-status", CheckLevel.PASS, "Vault is unsealed")

    def _check_key_material(self, required: bool) -> list[CheckResult]:
        path = self._key_store.path

        if not self._key_store.exists():
            return [
                CheckResult(
                    "unseal-keys-present",
                    CheckLevel.WARN if required else CheckLevel.INFO,
                    f"Unseal keys file not found: {path}",
                    ["Unseal manually with keys kept elsewhere: vault operator unseal"],
                )
            ]

        checks = [CheckResult("unseal-keys-present", CheckLevel.PASS, f"Unseal keys file found: {path}")]

        try:
            key_set = self._key_store.load()
        except KeyMaterialError as e:
            checks.append(CheckResult("unseal-keys-format", CheckLevel.FAIL, str(e)))
        else:
            checks.append(CheckResult("unseal-keys-format", CheckLevel.PASS, "Unseal keys file is valid JSON"))

            shares = len(key_set.shares())
            if shares < key_set.secret_threshold:
                checks.append(
                    CheckResult(
                        "unseal-keys-threshold",
                        CheckLevel.FAIL,
                        f"Insufficient unseal keys (need {key_set.secret_threshold}, have {shares})",
                    )
                )
            else:
                checks.append(
                    CheckResult(
                        "unseal-keys-threshold",
                        CheckLevel.PASS,
                        f"{shares} unseal keys (threshold {key_set.secret_threshold})",
                    )
                )

        mode = self._key_store.permissions()
        if self._key_store.is_secure():
            checks.append(
                CheckResult(
                    "unseal-keys-permissions", CheckLevel.PASS, f"Unseal keys file permissions: {mode:o} (owner only)"
                )
            )
        else:
            checks.append(
                CheckResult(
                    "unseal-keys-permissions",
                    CheckLevel.WARN,
                    f"Unseal keys file has insecure permissions: {mode:o}" if mode is not None else "Unknown permissions",
                    [f"chmod 600 {path}"],
                )
            )
        return checks

    def _check_storage_size(self) -> CheckResult:
        storage_dir = self._settings.storage_dir
        if not storage_dir.is_dir():
            return CheckResult("storage-size", CheckLevel.INFO, "No durable storage")
        return CheckResult(
            "storage-size",
            CheckLevel.INFO,
            f"Durable storage: {format_size(directory_size(storage_dir))} in {storage_dir}",
        )
