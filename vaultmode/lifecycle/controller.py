"""
Mode Controller: the operator-facing entry point for reading and changing the Vault mode.

The controller owns the ConfigurationStore. It reports the composite state of the
store, decides whether a switch is needed and which strategy to use, and hands
the actual work to the MigrationEngine.
"""

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import ModeConfiguration, VaultModeSettings
from vaultmode.exceptions import ServiceControlError, StoreError, StoreUnreachableError, VaultModeConfigurationError
from vaultmode.lifecycle.backup import BackupRecord, BackupStore
from vaultmode.lifecycle.keys import UnsealKeyStore
from vaultmode.lifecycle.migration import MigrationEngine, MigrationResult
from vaultmode.protocols import ClientFactory, ServiceRunner, StopOutcome
from vaultmode.types import VaultMode
from vaultmode.utils import directory_size

LOGGER = logging.getLogger("vaultmode.lifecycle.controller")


class SwitchStrategy(str, Enum):
    MIGRATE = "migrate"
    DISCARD = "discard"


class SwitchOutcome(str, Enum):
    NO_OP = "no_op"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not SwitchOutcome.FAILED


@dataclass
class SwitchResult:
    outcome: SwitchOutcome
    source: VaultMode
    target: VaultMode
    message: str = ""
    strategy: SwitchStrategy | None = None
    migration: MigrationResult | None = None

    @property
    def ok(self) -> bool:
        return self.outcome.ok


@dataclass
class CompositeStatus:
    """Declared configuration plus what could be observed about the running store."""

    mode: VaultMode
    auto_unseal: bool
    launch_command: str
    configured: bool
    vault_addr: str
    running: bool | None = None
    reachable: bool = False
    initialized: bool | None = None
    sealed: bool | None = None
    version: str | None = None
    storage_present: bool = False
    storage_size: int = 0
    keys_present: bool = False
    backup_count: int = 0
    latest_backup: str | None = None

    @property
    def storage_consistent(self) -> bool:
        return self.storage_present == (self.mode is VaultMode.DURABLE)


class ModeController:
    """
    Reads and changes the declared Vault mode.

    Example:
    -------
        ```python
        controller = container.mode_controller()

        status = controller.get_status()
        print(status.mode, status.sealed)

        result = controller.switch_mode(VaultMode.DURABLE, interactive=False, strategy=SwitchStrategy.MIGRATE)
        ```

    """

    def __init__(
        self,
        settings: VaultModeSettings,
        configuration: ConfigurationStore,
        key_store: UnsealKeyStore,
        backups: BackupStore,
        engine: MigrationEngine,
        runner: ServiceRunner,
        client_factory: ClientFactory,
        prompt: Callable[[str], str] = input,
    ):
        self._settings = settings
        self._configuration = configuration
        self._key_store = key_store
        self._backups = backups
        self._engine = engine
        self._runner = runner
        self._client_factory = client_factory
        self._prompt = prompt

    @property
    def configuration(self) -> ConfigurationStore:
        return self._configuration

    def current_mode(self) -> VaultMode:
        return self._configuration.load().mode

    def get_status(self) -> CompositeStatus:
        """
        Gather the composite status.

        Never raises for an unreachable store; only a malformed mode file raises.

        Raises
        ------
            VaultModeConfigurationError: If the mode file is malformed

        """
        config = self._configuration.load()
        storage_dir = self._settings.storage_dir
        storage_present = storage_dir.is_dir()

        status = CompositeStatus(
            mode=config.mode,
            auto_unseal=config.auto_unseal,
            launch_command=config.launch_command,
            configured=config.present,
            vault_addr=self._settings.vault_addr,
            running=self._runner.is_running(),
            storage_present=storage_present,
            storage_size=directory_size(storage_dir) if storage_present else 0,
            keys_present=self._key_store.exists(),
        )

        with self._client_factory(None) as client:
            try:
                health = client.health()
            except StoreUnreachableError as e:
                LOGGER.debug(f"Vault not reachable: {e}")
            except StoreError as e:
                LOGGER.warning(f"Unexpected health response: {e}")
                status.reachable = True
            else:
                status.reachable = True
                status.initialized = health.initialized
                status.sealed = health.sealed
                status.version = health.version

        backups = self._backups.list_backups()
        status.backup_count = len(backups)
        status.latest_backup = backups[0].name if backups else None
        return status

    # ------------------------------------------------------------------
    # Switching
    # ------------------------------------------------------------------

    def _ask_strategy(self, source: VaultMode, target: VaultMode) -> SwitchStrategy | None:
        menu = (
            f"Switching Vault mode: {source.value} → {target.value}\n"
            f"  1) Migrate secrets from {source.value} to {target.value} (recommended)\n"
            f"  2) Switch without migration (secrets in {source.value} storage are not carried over)\n"
            "  3) Cancel\n"
            "Choose [1-3]: "
        )
        try:
            choice = self._prompt(menu).strip()
        except EOFError:
            return None

        if choice == "1":
            return SwitchStrategy.MIGRATE
        if choice == "2" and self._confirm_discard(source):
            return SwitchStrategy.DISCARD
        return None

    def _confirm_discard(self, source: VaultMode) -> bool:
        try:
            answer = self._prompt(
                f"Secrets currently in {source.value} storage will not be available after the switch "
                "(a backup is still taken).\nType 'yes' to continue: "
            )
        except EOFError:
            return False
        return answer.strip() == "yes"

    def switch_mode(
        self,
        target: VaultMode,
        interactive: bool = True,
        strategy: SwitchStrategy | None = None,
    ) -> SwitchResult:
        """
        Switch the store to target mode.

        Args:
        ----
            target: Desired mode
            interactive: Ask the operator for a strategy (and confirm a discard)
            strategy: MIGRATE or DISCARD; required when not interactive

        Returns:
        -------
            SwitchResult. Switching to the declared mode is a NO_OP; a declined
            prompt is CANCELLED. Neither touches anything.

        Raises:
        ------
            ValueError: If not interactive and no strategy is given

        """
        source = self.current_mode()

        if target is source:
            message = f"Already in {target.value} mode - nothing to do"
            LOGGER.info(message)
            return SwitchResult(SwitchOutcome.NO_OP, source, target, message)

        if strategy is None:
            if not interactive:
                raise ValueError("A non-interactive switch requires a strategy: migrate or discard")
            strategy = self._ask_strategy(source, target)
        elif strategy is SwitchStrategy.DISCARD and interactive and not self._confirm_discard(source):
            strategy = None

        if strategy is None:
            message = "Mode switch cancelled"
            LOGGER.info(message)
            return SwitchResult(SwitchOutcome.CANCELLED, source, target, message)

        try:
            self._configuration.ensure_writable()
        except VaultModeConfigurationError as e:
            LOGGER.error(f"✗ {e}")
            return SwitchResult(SwitchOutcome.FAILED, source, target, str(e), strategy)

        migration = self._engine.migrate(source, target, restore=strategy is SwitchStrategy.MIGRATE)

        if not migration.succeeded:
            outcome = SwitchOutcome.FAILED
            message = f"Switch to {target.value} failed during {migration.failed_step.value}: {migration.error}"
        elif migration.degraded:
            outcome = SwitchOutcome.DEGRADED
            message = f"Switched to {target.value} mode with {len(migration.warnings)} warning(s)"
        else:
            outcome = SwitchOutcome.COMPLETED
            message = f"Switched to {target.value} mode"

        return SwitchResult(outcome, source, target, message, strategy, migration)

    # ------------------------------------------------------------------
    # Policy and maintenance
    # ------------------------------------------------------------------

    def set_auto_unseal(self, enabled: bool) -> ModeConfiguration:
        """Toggle automatic unsealing on store start."""
        if enabled:
            LOGGER.warning("⚠️  Unseal keys are stored in plain text on local disk - for local development only")
        return self._configuration.set_auto_unseal(enabled)

    def list_backups(self) -> list[BackupRecord]:
        """Complete backups, newest first."""
        return self._backups.list_backups()

    def reset(self, confirmed: bool = False) -> bool:
        """
        Wipe durable storage and unseal keys and declare ephemeral mode.

        Backups are kept. Asks for confirmation unless confirmed is True.

        Returns
        -------
            True if the reset was performed, False if it was declined

        Raises
        ------
            ServiceControlError: If Vault could not be stopped
            VaultModeConfigurationError: If the mode file cannot be written

        """
        if not confirmed:
            try:
                answer = self._prompt(
                    f"This deletes durable storage ({self._settings.storage_dir}) and the unseal keys "
                    f"({self._key_store.path}).\nType 'yes' to continue: "
                )
            except EOFError:
                answer = ""
            if answer.strip() != "yes":
                LOGGER.info("Reset cancelled")
                return False

        self._configuration.ensure_writable()

        outcome = self._runner.stop()
        if outcome is StopOutcome.FAILED:
            raise ServiceControlError("Could not stop Vault - refusing to delete storage under a running process")
        if outcome is StopOutcome.UNAVAILABLE:
            LOGGER.warning("Service control unavailable - make sure Vault is not running")

        storage_dir = self._settings.storage_dir
        if storage_dir.exists():
            shutil.rmtree(storage_dir)
            LOGGER.info(f"Removed durable storage: {storage_dir}")
        self._key_store.destroy()

        self._configuration.set_mode(VaultMode.EPHEMERAL, self._settings.launch_command_for(VaultMode.EPHEMERAL))
        self._configuration.set_auto_unseal(False)

        LOGGER.info("✓ Vault reset to ephemeral mode")
        LOGGER.info(f"Start Vault with: {self._runner.describe()}")
        return True

    def __repr__(self) -> str:
        """Return string representation."""
        return f"ModeController(configuration={self._configuration}, engine={self._engine})"
