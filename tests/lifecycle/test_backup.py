"""Tests for backups: creation, listing, restore and retention."""

import json
import os
import stat
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from vaultmode.exceptions import BackupError, StorePermissionError
from vaultmode.lifecycle.backup import METADATA_FILENAME, BackupStore, entry_filename

NAMESPACES = ["secret/dev", "secret/test", "secret/ci", "secret/prod"]


class _Clock:
    """Clock advancing one minute per call."""

    def __init__(self):
        self.now = datetime(2026, 10, 18, 14, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def store(tmp_path) -> BackupStore:
    return BackupStore(tmp_path / "vault-backups", retention=5, clock=_Clock())


class TestEntryFilename:
    """Tests for entry_filename()."""

    def test_reversible_and_flat(self):
        """Test file names contain no separators and differ for distinct paths."""
        assert entry_filename("secret/dev/ALPHA") == "secret%2Fdev%2FALPHA.json"
        assert entry_filename("secret/dev/a_b") != entry_filename("secret/dev/a/b")


class TestCreate:
    """Tests for BackupStore.create()."""

    def test_one_file_per_secret(self, store, fake_vault, client_factory):
        """Test every secret below the namespaces gets its own entry file."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        fake_vault.seed("secret/dev/app/DB_URL", {"value": "postgres://"})
        fake_vault.seed("secret/ci/TOKEN", {"value": "t"})

        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        files = sorted(p.name for p in record.path.iterdir())
        assert files == sorted(
            [
                METADATA_FILENAME,
                entry_filename("secret/dev/ALPHA"),
                entry_filename("secret/dev/app/DB_URL"),
                entry_filename("secret/ci/TOKEN"),
            ]
        )
        entry = json.loads((record.path / entry_filename("secret/dev/ALPHA")).read_text())
        assert entry == {"path": "secret/dev/ALPHA", "data": {"value": "x"}}

        assert record.metadata.secret_count == 3
        assert record.metadata.source_mode == "ephemeral"
        assert record.metadata.target_mode == "durable"
        assert record.metadata.reachable is True
        assert record.metadata.failed_paths == []
        assert record.metadata.complete is True

    def test_permissions(self, store, fake_vault, client_factory):
        """Test the directory is 0700 and every file 0600."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        assert stat.S_IMODE(os.stat(record.path).st_mode) == 0o700
        for item in record.path.iterdir():
            assert stat.S_IMODE(os.stat(item).st_mode) == 0o600

    def test_unreachable_store(self, store, fake_vault, client_factory):
        """Test an unreachable store yields an explicit empty backup."""
        fake_vault.shutdown()
        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        assert record.metadata.reachable is False
        assert record.metadata.secret_count == 0
        assert [p.name for p in record.path.iterdir()] == [METADATA_FILENAME]

    def test_read_failure_recorded(self, store, fake_vault, client_factory):
        """Test a failing read is listed in failed_paths and the rest continue."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        fake_vault.seed("secret/dev/BETA", {"value": "y"})
        fake_vault.fail_reads.add("dev/ALPHA")

        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        assert record.metadata.failed_paths == ["secret/dev/ALPHA"]
        assert record.metadata.secret_count == 1

    def test_list_failure_recorded(self, store, fake_vault, client_factory):
        """Test a namespace that cannot be listed is recorded and makes the backup incomplete."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})

        with patch(
            "vaultmode.clients.vault.VaultClient.list_secrets",
            side_effect=StorePermissionError("permission denied"),
        ):
            with client_factory("root") as client:
                record = store.create(client, ["secret/dev"], "durable", "ephemeral")

        assert record.metadata.failed_namespaces == ["secret/dev"]
        assert record.metadata.failed_paths == []
        assert record.metadata.secret_count == 0
        assert record.metadata.complete is False

    def test_root_is_a_file(self, tmp_path, fake_vault, client_factory):
        """Test a backup root that is not a directory raises BackupError."""
        root = tmp_path / "vault-backups"
        root.write_text("")
        store = BackupStore(root)

        with client_factory("root") as client:
            with pytest.raises(BackupError, match="Cannot create backup directory"):
                store.create(client, NAMESPACES, "ephemeral", "durable")

    def test_unwritable_entry(self, store, fake_vault, client_factory):
        """Test a failing file write raises BackupError and leaves no temporary file."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})

        with patch("vaultmode.lifecycle.backup.os.replace", side_effect=PermissionError("read-only file system")):
            with client_factory("root") as client:
                with pytest.raises(BackupError, match="Cannot write backup file"):
                    store.create(client, NAMESPACES, "ephemeral", "durable")

        (directory,) = store.root.iterdir()
        assert list(directory.iterdir()) == []

    def test_same_second_gets_suffix(self, tmp_path, fake_vault, client_factory):
        """Test two backups in the same second do not collide."""
        fixed = datetime(2026, 10, 18, 14, 30, tzinfo=timezone.utc)
        store = BackupStore(tmp_path / "vault-backups", clock=lambda: fixed)

        with client_factory("root") as client:
            first = store.create(client, NAMESPACES, "ephemeral", "durable")
            second = store.create(client, NAMESPACES, "durable", "ephemeral")

        assert first.name == "20261018-143000"
        assert second.name == "20261018-143000-1"
        assert store.latest().path == second.path


class TestOpenAndList:
    """Tests for open(), list_backups() and latest()."""

    def test_incomplete_backup_rejected(self, store, tmp_path):
        """Test a directory without metadata is not a usable backup."""
        directory = store.root / "20261018-143000"
        directory.mkdir(parents=True)
        (directory / entry_filename("secret/dev/ALPHA")).write_text("{}")

        assert not store.is_valid(directory)
        with pytest.raises(BackupError, match="Incomplete backup"):
            store.open(directory)
        assert store.list_backups() == []

    def test_missing_directory(self, store, tmp_path):
        """Test opening a missing directory raises BackupError."""
        with pytest.raises(BackupError, match="not found"):
            store.open(tmp_path / "nope")

    def test_newest_first(self, store, client_factory):
        """Test backups are listed newest first."""
        with client_factory("root") as client:
            names = [store.create(client, NAMESPACES, "ephemeral", "durable").name for _ in range(3)]

        assert [r.name for r in store.list_backups()] == list(reversed(names))
        assert store.latest().name == names[-1]

    def test_no_root(self, tmp_path):
        """Test listing before any backup exists."""
        store = BackupStore(tmp_path / "missing")
        assert store.list_backups() == []
        assert store.latest() is None
        assert store.prune() == []


class TestRestore:
    """Tests for BackupStore.restore()."""

    def test_restore_all(self, store, fake_vault, client_factory):
        """Test every entry is written back into an empty store."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        fake_vault.seed("secret/test/BETA", {"user": "u", "password": "p"})
        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        fake_vault.boot(durable=False)
        assert fake_vault.secret("secret/dev/ALPHA") is None

        with client_factory("root") as client:
            report = store.restore(client, record.path)

        assert report.restored_count == 2
        assert not report.degraded
        assert fake_vault.secret("secret/dev/ALPHA") == {"value": "x"}
        assert fake_vault.secret("secret/test/BETA") == {"user": "u", "password": "p"}

    def test_partial_failure(self, store, fake_vault, client_factory):
        """Test a failing write is reported by path and does not stop the others."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        fake_vault.seed("secret/dev/BETA", {"value": "y"})
        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")

        fake_vault.boot(durable=False)
        fake_vault.fail_writes.add("dev/ALPHA")
        with client_factory("root") as client:
            report = store.restore(client, record.path)

        assert report.degraded
        assert list(report.failed) == ["secret/dev/ALPHA"]
        assert report.restored == ["secret/dev/BETA"]
        assert report.summary() == "1 secrets restored, 1 failed"

    def test_unreadable_entry(self, store, fake_vault, client_factory):
        """Test a corrupted entry file is reported, not fatal."""
        fake_vault.seed("secret/dev/ALPHA", {"value": "x"})
        with client_factory("root") as client:
            record = store.create(client, NAMESPACES, "ephemeral", "durable")
        (record.path / "garbage.json").write_text("{")

        with client_factory("root") as client:
            report = store.restore(client, record.path)

        assert report.restored == ["secret/dev/ALPHA"]
        assert "garbage.json" in report.failed

    def test_restore_incomplete_backup(self, store, client_factory, tmp_path):
        """Test restoring from a directory without metadata is refused."""
        directory = tmp_path / "partial"
        directory.mkdir()
        with client_factory("root") as client, pytest.raises(BackupError):
            store.restore(client, directory)


class TestPrune:
    """Tests for retention."""

    def test_keeps_newest_five(self, store, client_factory):
        """Test at most five backups remain after pruning."""
        with client_factory("root") as client:
            names = [store.create(client, NAMESPACES, "ephemeral", "durable").name for _ in range(7)]

        removed = store.prune()

        assert [p.name for p in removed] == names[:2]
        assert sorted(r.name for r in store.list_backups()) == sorted(names[2:])

    def test_removes_incomplete(self, store, client_factory):
        """Test leftover incomplete directories are removed."""
        with client_factory("root") as client:
            store.create(client, NAMESPACES, "ephemeral", "durable")
        partial = store.root / "20200101-000000"
        partial.mkdir()

        assert store.prune() == [partial]
        assert len(store.list_backups()) == 1

    def test_nothing_to_prune(self, store, client_factory):
        """Test pruning below the retention window removes nothing."""
        with client_factory("root") as client:
            store.create(client, NAMESPACES, "ephemeral", "durable")
        assert store.prune() == []
