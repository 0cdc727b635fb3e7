"""Pytest configuration and fixtures for vaultmode tests."""

from collections.abc import Callable
from pathlib import Path

import pytest
from dependency_injector import providers
from fakes import FakeServiceRunner, FakeVault, no_sleep

from vaultmode.clients.vault import VaultClient
from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import VaultModeSettings
from vaultmode.container import VaultModeContainer, create_container
from vaultmode.lifecycle.backup import BackupStore
from vaultmode.lifecycle.controller import ModeController
from vaultmode.lifecycle.keys import UnsealKeyStore, key_set_from_init
from vaultmode.lifecycle.migration import MigrationEngine
from vaultmode.types import VaultMode


@pytest.fixture
def settings(tmp_path: Path) -> VaultModeSettings:
    """Settings rooted in a temporary project with fast, short polling."""
    return VaultModeSettings(
        data_dir=tmp_path / "data",
        compose_file=tmp_path / "docker-compose.yml",
        health_attempts=3,
        health_interval=0.0,
    )


@pytest.fixture
def fake_vault() -> FakeVault:
    """A running ephemeral fake Vault."""
    vault = FakeVault()
    vault.boot(durable=False)
    return vault


@pytest.fixture
def runner(fake_vault: FakeVault, settings: VaultModeSettings) -> FakeServiceRunner:
    return FakeServiceRunner(fake_vault, settings.storage_dir)


@pytest.fixture
def client_factory(fake_vault: FakeVault, settings: VaultModeSettings) -> Callable[..., VaultClient]:
    def create(token: str | None = None) -> VaultClient:
        return VaultClient(settings.vault_addr, token=token, transport=fake_vault.transport())

    return create


@pytest.fixture
def configuration(settings: VaultModeSettings) -> ConfigurationStore:
    return ConfigurationStore(settings.mode_file, default_launch_command=settings.ephemeral_command)


@pytest.fixture
def key_store(settings: VaultModeSettings) -> UnsealKeyStore:
    return UnsealKeyStore(settings.keys_file)


@pytest.fixture
def backups(settings: VaultModeSettings) -> BackupStore:
    return BackupStore(settings.backup_root, retention=settings.backup_retention)


@pytest.fixture
def engine(settings, configuration, key_store, backups, runner, client_factory) -> MigrationEngine:
    return MigrationEngine(
        settings=settings,
        configuration=configuration,
        key_store=key_store,
        backups=backups,
        runner=runner,
        client_factory=client_factory,
        sleep=no_sleep,
    )


@pytest.fixture
def answers() -> list[str]:
    """Scripted answers consumed by the controller's prompt (tests append to it)."""
    return []


@pytest.fixture
def controller(settings, configuration, key_store, backups, engine, runner, client_factory, answers) -> ModeController:
    def prompt(_message: str) -> str:
        if not answers:
            raise EOFError
        return answers.pop(0)

    return ModeController(
        settings=settings,
        configuration=configuration,
        key_store=key_store,
        backups=backups,
        engine=engine,
        runner=runner,
        client_factory=client_factory,
        prompt=prompt,
    )


@pytest.fixture
def ephemeral_declared(configuration: ConfigurationStore, settings: VaultModeSettings) -> ConfigurationStore:
    """Mode file declaring ephemeral mode."""
    configuration.set_mode(VaultMode.EPHEMERAL, settings.ephemeral_command)
    return configuration


@pytest.fixture
def container(settings, fake_vault, runner, answers) -> VaultModeContainer:
    """Fully wired container talking to the fake Vault and fake runner."""

    def prompt(_message: str) -> str:
        if not answers:
            raise EOFError
        return answers.pop(0)

    container = create_container(settings=settings)
    container.transport.override(providers.Object(fake_vault.transport()))
    container.runner.override(providers.Object(runner))
    container.sleep.override(providers.Object(no_sleep))
    container.prompt.override(providers.Object(prompt))
    return container


@pytest.fixture
def durable_vault(fake_vault: FakeVault, client_factory, key_store: UnsealKeyStore) -> FakeVault:
    """Fake Vault restarted in durable mode, initialized (5 shares, threshold 3) and sealed."""
    fake_vault.wipe_disk()
    fake_vault.boot(durable=True)
    with client_factory() as client:
        init = client.init(5, 3)
    key_store.save(key_set_from_init(init, shares=5, threshold=3))
    return fake_vault
