"""
Protocol definitions for vaultmode.

These protocols define the contracts that adapters must implement, so the lifecycle
components can be wired with Docker Compose in real use and with in-process fakes
in tests.

All protocols follow PEP 544 (Structural Subtyping / Protocol).
"""

from enum import Enum
from typing import Protocol, runtime_checkable

from vaultmode.clients.vault import VaultClient


class StopOutcome(str, Enum):
    """Result of stopping the Vault process. NOT_RUNNING is not an error."""

    STOPPED = "stopped"
    NOT_RUNNING = "not_running"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"

    @property
    def ok(self) -> bool:
        return self in (StopOutcome.STOPPED, StopOutcome.NOT_RUNNING)


class StartOutcome(str, Enum):
    """Result of starting the Vault process (reachability is checked separately)."""

    STARTED = "started"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"

    @property
    def ok(self) -> bool:
        return self is StartOutcome.STARTED


@runtime_checkable
class ServiceRunner(Protocol):
    """
    Protocol for controlling the Vault server process.

    Implementations:
    - service/compose.py - ComposeServiceRunner (docker compose)
    """

    def is_running(self) -> bool | None:
        """
        Check whether the Vault process is running.

        Returns
        -------
            True/False, or None when the process manager is not accessible

        """
        ...

    def stop(self) -> StopOutcome:
        """Stop the Vault process."""
        ...

    def start(self, launch_command: str) -> StartOutcome:
        """
        Start the Vault process with a launch command.

        Args:
        ----
            launch_command: Vault server arguments (e.g. "server -dev ...")

        """
        ...

    def describe(self) -> str:
        """Human-readable restart command for recovery instructions."""
        ...


@runtime_checkable
class ClientFactory(Protocol):
    """
    Protocol for creating Vault clients bound to a token.

    The container provides a factory built from settings; tests provide one
    bound to an httpx.MockTransport.
    """

    def __call__(self, token: str | None = None) -> VaultClient:
        ...
