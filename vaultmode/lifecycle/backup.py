"""
Secret backups taken before every mode switch.

Layout of one backup (a timestamped directory under data/vault-backups/):

    20261018-143000/
        secret%2Fdev%2FALPHA.json     one file per secret: {"path": ..., "data": {...}}
        secret%2Fci%2FTOKEN.json
        metadata.json                  written last; its presence marks a complete backup

Directories are 0700 and files 0600. Only the most recent backups are retained.
"""

import json
import logging
import os
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from pydantic import ValidationError

from vaultmode.clients.vault import VaultClient
from vaultmode.config.schemas import BackupEntry, BackupMetadata
from vaultmode.exceptions import BackupError, SecretNotFoundError, StoreError
from vaultmode.utils import OWNER_ONLY_DIR, OWNER_ONLY_FILE

LOGGER = logging.getLogger("vaultmode.lifecycle.backup")

METADATA_FILENAME = "metadata.json"
RETIRED_DIRNAME = "retired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def entry_filename(path: str) -> str:
    """File name for a secret path; reversible and free of path separators."""
    return f"{quote(path, safe='')}.json"


@dataclass(frozen=True)
class BackupRecord:
    """A complete backup on disk."""

    path: Path
    metadata: BackupMetadata

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class RestoreReport:
    """Per-item outcome of replaying a backup into a store."""

    backup_dir: Path
    restored: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def degraded(self) -> bool:
        return bool(self.failed)

    def summary(self) -> str:
        return f"{self.restored_count} secrets restored, {self.failed_count} failed"


class BackupStore:
    """
    Creates, lists, restores and prunes backups.

    Example:
    -------
        ```python
        backups = BackupStore(settings.backup_root, retention=5)

        record = backups.create(client, settings.namespaces, "ephemeral", "durable")
        print(record.metadata.secret_count)

        report = backups.restore(target_client, record.path)
        print(report.summary())
        ```

    """

    def __init__(self, root: Path, retention: int = 5, clock: Callable[[], datetime] = _utcnow):
        self.root = root
        self.retention = retention
        self._clock = clock

    # ------------------------------------------------------------------
    # Creating
    # ------------------------------------------------------------------

    def _new_directory(self, now: datetime) -> Path:
        base = now.strftime("%Y%m%d-%H%M%S")
        candidate = self.root / base
        suffix = 1
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            while candidate.exists():
                candidate = self.root / f"{base}-{suffix}"
                suffix += 1
            candidate.mkdir(mode=OWNER_ONLY_DIR)
            os.chmod(candidate, OWNER_ONLY_DIR)
        except OSError as e:
            raise BackupError(f"Cannot create backup directory {candidate}: {e}") from e
        return candidate

    @staticmethod
    def _write_private(path: Path, content: str) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, OWNER_ONLY_FILE)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp_path, OWNER_ONLY_FILE)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BackupError(f"Cannot write backup file {path}: {e}") from e

    def create(
        self,
        client: VaultClient,
        namespaces: Iterable[str],
        source_mode: str,
        target_mode: str,
    ) -> BackupRecord:
        """
        Export every secret below the namespaces into a new backup directory.

        An unreachable store produces an explicit empty backup (reachable=false in
        the metadata) instead of failing. Secrets that cannot be read are listed
        in failed_paths, namespaces that cannot be listed in failed_namespaces;
        neither stops the remaining ones.

        Returns
        -------
            The complete BackupRecord (metadata already written)

        Raises
        ------
            BackupError: If the backup directory or one of its files cannot be written

        """
        now = self._clock()
        directory = self._new_directory(now)
        LOGGER.info(f"Creating backup before migration: {directory}")

        reachable = client.is_reachable()
        failed: list[str] = []
        failed_namespaces: list[str] = []
        count = 0

        if not reachable:
            LOGGER.warning(f"Vault is not accessible at {client.address}")
            LOGGER.warning("Backup will be empty - ensure Vault is running")
        else:
            for namespace in namespaces:
                LOGGER.info(f"Backing up {namespace}...")
                try:
                    paths = client.list_secrets(namespace)
                except StoreError as e:
                    LOGGER.warning(f"Failed to list {namespace}: {e}")
                    failed_namespaces.append(namespace)
                    continue

                if not paths:
                    LOGGER.info(f"No secrets found in {namespace} (path may not exist)")
                    continue

                for path in paths:
                    try:
                        data = client.read_secret(path)
                    except SecretNotFoundError:
                        LOGGER.debug(f"Skipping {path}: no current version")
                        continue
                    except StoreError as e:
                        LOGGER.warning(f"Failed to backup {path}: {e}")
                        failed.append(path)
                        continue

                    entry = BackupEntry(path=path, data=data)
                    self._write_private(directory / entry_filename(path), entry.model_dump_json(indent=2))
                    count += 1

        metadata = BackupMetadata(
            timestamp=now,
            source_mode=source_mode,
            target_mode=target_mode,
            secret_count=count,
            vault_addr=client.address,
            reachable=reachable,
            failed_paths=failed,
            failed_namespaces=failed_namespaces,
        )
        self._write_private(directory / METADATA_FILENAME, metadata.model_dump_json(indent=2))

        if failed or failed_namespaces:
            LOGGER.warning(
                f"Backup created with {len(failed) + len(failed_namespaces)} failure(s): {directory} ({count} secrets)"
            )
        else:
            LOGGER.info(f"✓ Backup created: {directory} ({count} secrets)")
        return BackupRecord(directory, metadata)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid(directory: Path) -> bool:
        """A backup is usable only if its metadata file exists."""
        return (directory / METADATA_FILENAME).is_file()

    def open(self, directory: Path) -> BackupRecord:
        """
        Open an existing backup.

        Raises
        ------
            BackupError: If the directory is missing, incomplete or its metadata is invalid

        """
        if not directory.is_dir():
            raise BackupError(f"Backup directory not found: {directory}")
        if not self.is_valid(directory):
            raise BackupError(f"Incomplete backup (no {METADATA_FILENAME}): {directory}")

        try:
            metadata = BackupMetadata.model_validate_json((directory / METADATA_FILENAME).read_text())
        except (OSError, ValidationError) as e:
            raise BackupError(f"Invalid backup metadata in {directory}: {e}") from e

        return BackupRecord(directory, metadata)

    def load_entries(self, directory: Path) -> tuple[list[BackupEntry], dict[str, str]]:
        """
        Read every secret file of a backup.

        Returns
        -------
            (entries sorted by path, {file name: error} for unreadable files)

        """
        entries: list[BackupEntry] = []
        errors: dict[str, str] = {}

        for entry_file in sorted(directory.glob("*.json")):
            if entry_file.name == METADATA_FILENAME:
                continue
            try:
                entries.append(BackupEntry.model_validate_json(entry_file.read_text()))
            except (OSError, ValidationError) as e:
                errors[entry_file.name] = f"unreadable backup entry: {e}"

        entries.sort(key=lambda entry: entry.path)
        return entries, errors

    def list_backups(self) -> list[BackupRecord]:
        """Return complete backups, newest first."""
        if not self.root.is_dir():
            return []

        records = []
        for directory in self.root.iterdir():
            if not directory.is_dir() or directory.name.startswith("."):
                continue
            try:
                records.append(self.open(directory))
            except BackupError as e:
                LOGGER.debug(f"Skipping {directory}: {e}")

        records.sort(key=lambda r: (r.metadata.timestamp, r.name), reverse=True)
        return records

    def latest(self) -> BackupRecord | None:
        backups = self.list_backups()
        return backups[0] if backups else None

    # ------------------------------------------------------------------
    # Restoring
    # ------------------------------------------------------------------

    def restore(self, client: VaultClient, directory: Path) -> RestoreReport:
        """
        Replay every entry of a backup into the store behind client.

        A failing secret is recorded by path and does not stop the others.

        Raises
        ------
            BackupError: If the backup is missing or incomplete

        """
        record = self.open(directory)
        entries, unreadable = self.load_entries(directory)
        report = RestoreReport(backup_dir=directory)
        report.failed.update(unreadable)

        LOGGER.info(
            f"Importing secrets from backup: {directory} "
            f"({record.metadata.secret_count} recorded, taken {record.metadata.timestamp.isoformat()})"
        )

        for entry in entries:
            LOGGER.info(f"Restoring {entry.path}...")
            try:
                client.write_secret(entry.path, entry.data)
            except StoreError as e:
                LOGGER.warning(f"Failed to restore {entry.path}: {e}")
                report.failed[entry.path] = str(e)
                continue
            report.restored.append(entry.path)

        if report.degraded:
            LOGGER.warning(f"Import finished with failures: {report.summary()}")
        else:
            LOGGER.info(f"✓ Import complete: {report.summary()}")
        return report

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune(self) -> list[Path]:
        """
        Delete backups beyond the retention window, oldest first.

        Incomplete backup directories (no metadata) are unusable and are removed too.

        Returns
        -------
            Removed directories

        """
        if not self.root.is_dir():
            return []

        complete = self.list_backups()
        keep = {record.path for record in complete[: self.retention]}

        removed = []
        for directory in sorted(self.root.iterdir()):
            if not directory.is_dir() or directory.name.startswith(".") or directory in keep:
                continue
            shutil.rmtree(directory)
            removed.append(directory)

        if removed:
            LOGGER.info(f"Old backups removed (kept last {self.retention}): {', '.join(p.name for p in removed)}")
        else:
            LOGGER.debug(f"Only {len(complete)} backup(s) exist - no cleanup needed")
        return removed

    def describe(self, record: BackupRecord) -> dict:
        """Metadata as a plain dict for display."""
        return json.loads(record.metadata.model_dump_json()) | {"path": str(record.path)}

    def __repr__(self) -> str:
        """Return string representation."""
        return f"BackupStore(root='{self.root}', retention={self.retention})"
