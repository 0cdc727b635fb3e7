"""
Dependency injection container for vaultmode.

Wires settings → stores → client factory → service runner → lifecycle components.
Uses dependency-injector so the CLI and tests can override any provider (for
example the HTTP transport or the service runner).
"""

import time
from pathlib import Path

import httpx
from dependency_injector import containers, providers

from vaultmode.clients.vault import VaultClient
from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import VaultModeSettings
from vaultmode.config.settings import load_settings
from vaultmode.lifecycle.backup import BackupStore
from vaultmode.lifecycle.controller import ModeController
from vaultmode.lifecycle.keys import UnsealKeyStore
from vaultmode.lifecycle.migration import MigrationEngine
from vaultmode.lifecycle.startup import StartupHook
from vaultmode.lifecycle.unseal import AutoUnsealAgent
from vaultmode.lifecycle.validator import Validator
from vaultmode.protocols import ClientFactory
from vaultmode.service.compose import ComposeServiceRunner


def _make_client_factory(settings: VaultModeSettings, transport: httpx.BaseTransport | None = None) -> ClientFactory:
    """Return a callable creating VaultClients for settings.vault_addr bound to a token."""

    def create(token: str | None = None) -> VaultClient:
        return VaultClient(settings.vault_addr, token=token, timeout=settings.request_timeout, transport=transport)

    return create


class VaultModeContainer(containers.DeclarativeContainer):
    """
    Inversion of Control (IoC) container for vaultmode.

    Example:
    -------
        ```python
        from vaultmode.container import VaultModeContainer

        container = VaultModeContainer()

        controller = container.mode_controller()
        print(controller.get_status().mode)

        # Tests: swap the HTTP transport and the process runner
        container.transport.override(providers.Object(httpx.MockTransport(handler)))
        container.runner.override(providers.Object(fake_runner))
        ```

    """

    # Settings are loaded once; override with providers.Object(settings) for a specific project
    settings = providers.Singleton(load_settings)

    # Overridable seams
    transport = providers.Object(None)
    sleep = providers.Object(time.sleep)
    prompt = providers.Object(input)

    configuration = providers.Singleton(
        ConfigurationStore,
        path=settings.provided.mode_file,
        default_launch_command=settings.provided.ephemeral_command,
        default_auto_unseal=settings.provided.auto_unseal_default,
    )
    key_store = providers.Singleton(UnsealKeyStore, path=settings.provided.keys_file)
    backups = providers.Singleton(
        BackupStore,
        root=settings.provided.backup_root,
        retention=settings.provided.backup_retention,
    )

    client_factory = providers.Singleton(_make_client_factory, settings=settings, transport=transport)

    runner = providers.Singleton(
        ComposeServiceRunner,
        compose_file=settings.provided.compose_file,
        service_name=settings.provided.service_name,
    )

    unseal_agent = providers.Singleton(
        AutoUnsealAgent,
        client_factory=client_factory,
        key_store=key_store,
        vault_addr=settings.provided.vault_addr,
    )

    migration_engine = providers.Singleton(
        MigrationEngine,
        settings=settings,
        configuration=configuration,
        key_store=key_store,
        backups=backups,
        runner=runner,
        client_factory=client_factory,
        sleep=sleep,
    )

    mode_controller = providers.Singleton(
        ModeController,
        settings=settings,
        configuration=configuration,
        key_store=key_store,
        backups=backups,
        engine=migration_engine,
        runner=runner,
        client_factory=client_factory,
        prompt=prompt,
    )

    validator = providers.Singleton(
        Validator,
        settings=settings,
        configuration=configuration,
        key_store=key_store,
        runner=runner,
        client_factory=client_factory,
    )

    startup_hook = providers.Singleton(
        StartupHook,
        settings=settings,
        configuration=configuration,
        agent=unseal_agent,
        client_factory=client_factory,
        sleep=sleep,
    )


def create_container(project_root: Path | None = None, settings: VaultModeSettings | None = None) -> VaultModeContainer:
    """
    Build a container for a project.

    Args:
    ----
        project_root: Directory to discover .vaultmode.yaml from (defaults to cwd)
        settings: Pre-built settings (skips discovery)

    Returns:
    -------
        VaultModeContainer with settings bound

    Raises:
    ------
        VaultModeConfigurationError: If the settings file is invalid

    """
    container = VaultModeContainer()
    container.settings.override(providers.Object(settings or load_settings(project_root)))
    return container
