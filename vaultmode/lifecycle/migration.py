"""
Migration of secrets between ephemeral and durable Vault modes.

A migration is an explicit state machine:

    IDLE → BACKING_UP → STOPPING → RECONFIGURING → STARTING
         → [INITIALIZING] → [UNSEALING] → RESTORING → DONE

FAILED is reachable from every step. A failure never deletes the backup taken in
BACKING_UP; the result carries the exact commands to recover from it. Per-secret
problems (backup or restore) do not fail the migration, they make it degraded.

The declared MODE is only committed once the new store is reachable and usable.
"""

import logging
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from vaultmode.clients.schemas import HealthResponse
from vaultmode.clients.vault import VaultClient
from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import VaultModeSettings, preview_key
from vaultmode.exceptions import KeyMaterialError, StoreError, StoreSealedError, StoreUnreachableError, VaultModeError
from vaultmode.lifecycle.backup import RETIRED_DIRNAME, BackupRecord, BackupStore, RestoreReport
from vaultmode.lifecycle.keys import UnsealKeyStore, key_set_from_init
from vaultmode.lifecycle.unseal import manual_unseal_instructions, submit_unseal_shares
from vaultmode.protocols import ClientFactory, ServiceRunner, StopOutcome
from vaultmode.retry import poll_until
from vaultmode.types import VaultMode

LOGGER = logging.getLogger("vaultmode.lifecycle.migration")


class MigrationState(str, Enum):
    IDLE = "idle"
    BACKING_UP = "backing_up"
    STOPPING = "stopping"
    RECONFIGURING = "reconfiguring"
    STARTING = "starting"
    INITIALIZING = "initializing"
    UNSEALING = "unsealing"
    RESTORING = "restoring"
    DONE = "done"
    FAILED = "failed"


@dataclass
class MigrationResult:
    """Outcome of one migration attempt."""

    source: VaultMode
    target: VaultMode
    restore_requested: bool = True
    state: MigrationState = MigrationState.IDLE
    history: list[MigrationState] = field(default_factory=lambda: [MigrationState.IDLE])
    backup: BackupRecord | None = None
    restore: RestoreReport | None = None
    failed_step: MigrationState | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    recovery: list[str] = field(default_factory=list)
    retired_to: Path | None = None
    pruned: list[Path] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is MigrationState.DONE

    @property
    def degraded(self) -> bool:
        """Completed, but not every secret made it across."""
        return self.succeeded and bool(self.warnings)


class _StepFailed(Exception):
    def __init__(self, message: str, recovery: list[str] | None = None):
        super().__init__(message)
        self.recovery = recovery or []


class MigrationEngine:
    """
    Orchestrates mode switches and rollbacks.

    Example:
    -------
        ```python
        engine = container.migration_engine()

        result = engine.migrate(VaultMode.EPHEMERAL, VaultMode.DURABLE)
        if not result.succeeded:
            print(result.error)
            print("\n".join(result.recovery))
        ```

    """

    def __init__(
        self,
        settings: VaultModeSettings,
        configuration: ConfigurationStore,
        key_store: UnsealKeyStore,
        backups: BackupStore,
        runner: ServiceRunner,
        client_factory: ClientFactory,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._configuration = configuration
        self._key_store = key_store
        self._backups = backups
        self._runner = runner
        self._client_factory = client_factory
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def token_for(self, mode: VaultMode) -> str | None:
        """
        Administrative token for a store running in mode.

        Durable stores use the root token saved at initialization (falling back to
        a pre-supplied VAULT_TOKEN); ephemeral stores use the pre-supplied token or
        the dev-mode root token.
        """
        if mode is VaultMode.DURABLE:
            if self._key_store.exists():
                try:
                    return self._key_store.load().root_token
                except KeyMaterialError as e:
                    LOGGER.warning(f"Cannot read root token from key file: {e}")
            return self._settings.vault_token
        return self._settings.vault_token or self._settings.ephemeral_root_token

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    @staticmethod
    def _enter(result: MigrationResult, state: MigrationState) -> None:
        result.state = state
        result.history.append(state)
        LOGGER.info(f"[{state.value}] {result.source.value} → {result.target.value}")

    def migrate(self, source: VaultMode, target: VaultMode, restore: bool = True) -> MigrationResult:
        """
        Switch the store from source to target mode.

        Args:
        ----
            source: Mode the store currently runs in
            target: Mode to switch to
            restore: Replay the backup into the new store (False = switch without
                migrating secrets; the backup is still taken)

        Returns:
        -------
            MigrationResult (never raises for operational failures)

        Raises:
        ------
            ValueError: If source and target are the same

        """
        if source is target:
            raise ValueError(f"Source and target modes cannot be the same: {source.value}")

        result = MigrationResult(source=source, target=target, restore_requested=restore)
        previous = self._configuration.load()
        committed = False

        LOGGER.info(f"Vault Migration: {source.value} → {target.value}")

        try:
            backup = self._back_up(result)
            self._stop(result)
            self._reconfigure(result)
            health = self._start(result)

            with self._client_factory(None) as client:
                if target is VaultMode.DURABLE:
                    self._initialize_and_unseal(result, client, health)
                elif health.sealed:
                    raise _StepFailed(f"Ephemeral Vault at {client.address} reports sealed after start")

            self._configuration.set_mode(target, self._settings.launch_command_for(target))
            committed = True

            self._restore(result, backup)

            if source is VaultMode.DURABLE and target is VaultMode.EPHEMERAL:
                self._retire_durable_storage(result, backup)

            self._enter(result, MigrationState.DONE)

        except (_StepFailed, VaultModeError, OSError) as e:
            self._fail(result, e, previous_launch_command=None if committed else previous.launch_command)

        finally:
            result.pruned = self._prune()

        if result.succeeded:
            if result.degraded:
                LOGGER.warning(f"Migration complete with warnings: {source.value} → {target.value}")
                for warning in result.warnings:
                    LOGGER.warning(f"  - {warning}")
            else:
                LOGGER.info(f"✓ Migration complete: {source.value} → {target.value}")
        return result

    def _back_up(self, result: MigrationResult) -> BackupRecord:
        """
        Take the pre-migration backup.

        A sealed source, or a namespace that cannot be listed, fails the
        migration here, before anything is stopped.
        """
        self._enter(result, MigrationState.BACKING_UP)
        with self._client_factory(self.token_for(result.source)) as client:
            try:
                sealed = client.seal_status().sealed
            except StoreUnreachableError:
                sealed = False
            if sealed:
                raise _StepFailed(
                    f"{result.source.value.capitalize()} Vault at {client.address} is sealed: "
                    "its secrets cannot be backed up",
                    [
                        *manual_unseal_instructions(client.address, self._settings.key_threshold),
                        "Or: vaultmode unseal",
                        f"Then retry: vaultmode switch {result.target.value}",
                    ],
                )

            record = self._backups.create(
                client,
                self._settings.namespaces,
                result.source.value,
                result.target.value,
            )
        result.backup = record

        if record.metadata.failed_namespaces:
            raise _StepFailed(
                f"Could not list {', '.join(record.metadata.failed_namespaces)}: "
                "the backup would be incomplete, nothing was stopped",
                [
                    "Check VAULT_TOKEN and the Vault logs (vaultmode validate)",
                    f"Then retry: vaultmode switch {result.target.value}",
                ],
            )

        if not record.metadata.reachable:
            result.warnings.append(f"Backup is empty: Vault was not reachable at {record.metadata.vault_addr}")
        if record.metadata.failed_paths:
            result.warnings.append(
                f"{len(record.metadata.failed_paths)} secret(s) could not be backed up: "
                f"{', '.join(record.metadata.failed_paths)}"
            )
        return record

    def _stop(self, result: MigrationResult) -> None:
        # Fail closed: nothing is stopped unless the configuration can be rewritten
        self._configuration.ensure_writable()

        self._enter(result, MigrationState.STOPPING)
        outcome = self._runner.stop()
        if outcome is StopOutcome.NOT_RUNNING:
            LOGGER.info("Vault was already stopped")
        elif not outcome.ok:
            raise _StepFailed(
                f"Could not stop Vault ({outcome.value}); configuration left unchanged",
                ["Check the Vault container, then retry the switch"],
            )

    def _reconfigure(self, result: MigrationResult) -> None:
        self._enter(result, MigrationState.RECONFIGURING)
        if result.target is VaultMode.DURABLE:
            storage_dir = self._settings.storage_dir
            try:
                storage_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise _StepFailed(
                    f"Cannot create durable storage directory {storage_dir}: {e}",
                    [f"Make {storage_dir} a writable directory, then retry: vaultmode switch durable"],
                ) from e
        self._configuration.set_launch_command(self._settings.launch_command_for(result.target))

    def _start(self, result: MigrationResult) -> HealthResponse:
        self._enter(result, MigrationState.STARTING)
        launch_command = self._settings.launch_command_for(result.target)
        outcome = self._runner.start(launch_command)
        if not outcome.ok:
            raise _StepFailed(
                f"Could not start Vault in {result.target.value} mode ({outcome.value})",
                [f"Start Vault manually: {self._runner.describe()}"],
            )

        LOGGER.info("Waiting for Vault to be ready...")
        with self._client_factory(None) as client:
            poll = poll_until(
                client.health,
                attempts=self._settings.health_attempts,
                interval=self._settings.health_interval,
                backoff=self._settings.health_backoff,
                sleep=self._sleep,
                description="Vault",
            )

        if not poll.ready:
            raise _StepFailed(
                f"Vault did not become reachable after {poll.attempts} attempts ({poll.waited:.0f}s)"
                + (f": {poll.last_error}" if poll.last_error else ""),
                [f"Check the Vault container logs, then start it: {self._runner.describe()}"],
            )

        LOGGER.info("✓ Vault is ready")
        return poll.value

    def _initialize_and_unseal(self, result: MigrationResult, client: VaultClient, health: HealthResponse) -> None:
        if not health.initialized:
            self._enter(result, MigrationState.INITIALIZING)
            if self._key_store.exists():
                raise _StepFailed(
                    f"Durable Vault is not initialized but an unseal keys file exists: {self._key_store.path}. "
                    "Those keys belong to a previous raft database and will not be reused.",
                    ["Wipe durable storage and stale keys: vaultmode reset", "Then retry: vaultmode switch durable"],
                )

            shares, threshold = self._settings.key_shares, self._settings.key_threshold
            LOGGER.info(f"Initializing durable Vault ({shares} shares, threshold {threshold})...")
            init = client.init(shares, threshold)
            self._key_store.save(key_set_from_init(init, shares, threshold))
            LOGGER.info(f"✓ Vault initialized (root token {preview_key(init.root_token)})")

        status = client.seal_status()
        if not status.sealed:
            return

        self._enter(result, MigrationState.UNSEALING)
        key_set = self._key_store.load()
        threshold = status.threshold or key_set.secret_threshold
        manual = manual_unseal_instructions(client.address, threshold)
        try:
            final, submitted = submit_unseal_shares(client, key_set.shares(), threshold)
        except ValueError as e:
            raise _StepFailed(str(e), manual) from e

        if final.sealed:
            raise _StepFailed(f"Vault is still sealed after {submitted} unseal keys", manual)

    def _restore(self, result: MigrationResult, backup: BackupRecord) -> None:
        if not result.restore_requested:
            LOGGER.warning("Switching without migration - secrets were NOT restored")
            LOGGER.info(f"Backup kept at {backup.path} (restore with: vaultmode rollback {backup.path})")
            return

        self._enter(result, MigrationState.RESTORING)
        with self._client_factory(self.token_for(result.target)) as client:
            report = self._backups.restore(client, backup.path)
        result.restore = report

        if report.degraded:
            result.warnings.append(f"{report.failed_count} secret(s) failed to restore: {', '.join(report.failed)}")
            result.recovery.append(f"Retry the failed secrets with: vaultmode rollback {backup.path}")

    def _retire_durable_storage(self, result: MigrationResult, backup: BackupRecord) -> None:
        """
        Move raft data and key material into the backup so durable storage exists only in durable mode.

        Storage stays in place when the backup is incomplete or some secrets failed to restore.
        """
        storage_dir = self._settings.storage_dir
        if not backup.metadata.complete:
            result.warnings.append(f"Durable storage kept at {storage_dir} because the backup is incomplete")
            result.recovery.append("Remove durable storage once secrets are verified: vaultmode reset")
            return
        if result.restore is not None and result.restore.degraded:
            result.warnings.append(f"Durable storage kept at {storage_dir} because some secrets failed to restore")
            return

        destination = backup.path / RETIRED_DIRNAME
        try:
            destination.mkdir(mode=0o700, exist_ok=True)
            if storage_dir.exists():
                shutil.move(str(storage_dir), str(destination / "raft"))
            self._key_store.retire(destination / self._key_store.path.name)
        except OSError as e:
            result.warnings.append(f"Could not retire durable storage {storage_dir}: {e}")
            result.recovery.append("Remove durable storage once secrets are verified: vaultmode reset")
            return

        result.retired_to = destination
        LOGGER.info(f"Durable storage retired to {destination}")

    def _fail(self, result: MigrationResult, error: Exception, previous_launch_command: str | None) -> None:
        failed_step = result.state
        result.failed_step = failed_step
        result.error = str(error)
        result.state = MigrationState.FAILED
        result.history.append(MigrationState.FAILED)

        recovery = list(getattr(error, "recovery", []))
        if isinstance(error, StoreSealedError):
            recovery.extend(manual_unseal_instructions(self._settings.vault_addr, self._settings.key_threshold))
        elif isinstance(error, StoreUnreachableError):
            recovery.append(f"Start Vault: {self._runner.describe()}")

        if previous_launch_command is not None and failed_step not in (MigrationState.IDLE, MigrationState.BACKING_UP):
            try:
                self._configuration.set_launch_command(previous_launch_command)
                recovery.append(
                    f"Configuration still declares {result.source.value} mode; "
                    f"start Vault again with: {self._runner.describe()}"
                )
            except VaultModeError as e:
                LOGGER.error(f"Could not restore previous launch command: {e}")

        if result.backup is not None:
            recovery.append(f"Once Vault is running, restore secrets with: vaultmode rollback {result.backup.path}")

        result.recovery.extend(recovery)

        LOGGER.error(f"✗ Migration failed during {failed_step.value}: {error}")
        for line in result.recovery:
            LOGGER.info(f"  {line}")

    def _prune(self) -> list[Path]:
        try:
            return self._backups.prune()
        except OSError as e:
            LOGGER.warning(f"Could not prune old backups: {e}")
            return []

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback_from(self, backup_dir: Path) -> RestoreReport:
        """
        Replay a backup into whatever store is currently active.

        The declared mode is not changed; callers wanting a full reversal switch
        modes first.

        Raises
        ------
            BackupError: If the backup is missing or incomplete
            StoreUnreachableError: If Vault is not reachable
            StoreSealedError: If Vault is sealed

        """
        record = self._backups.open(backup_dir)
        mode = self._configuration.load().mode

        LOGGER.info(f"Rolling back from backup: {record.path}")
        LOGGER.info(f"Backup timestamp: {record.metadata.timestamp.isoformat()}")
        LOGGER.info(f"Secret count: {record.metadata.secret_count}")

        with self._client_factory(self.token_for(mode)) as client:
            if not client.is_reachable():
                raise StoreUnreachableError(f"Cannot connect to Vault at {client.address}")
            try:
                sealed = client.seal_status().sealed
            except StoreError as e:
                LOGGER.warning(f"Cannot determine Vault seal status: {e}. Proceeding anyway...")
                sealed = False
            if sealed:
                raise StoreSealedError(f"Vault is sealed: unseal it before restoring from {record.path}")

            report = self._backups.restore(client, record.path)

        self._prune()
        return report

    def __repr__(self) -> str:
        """Return string representation."""
        return f"MigrationEngine(backups={self._backups}, runner={self._runner})"
