"""
Post-start policy gate.

Runs after every store start (container post-start hook). Ephemeral stores need
nothing. Durable stores are unsealed automatically only when the operator opted in
with AUTO_UNSEAL=true; otherwise the manual unseal commands are printed and the
store stays sealed.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from vaultmode.config.mode_file import ConfigurationStore
from vaultmode.config.schemas import VaultModeSettings
from vaultmode.lifecycle.unseal import AutoUnsealAgent, UnsealReport, manual_unseal_instructions
from vaultmode.protocols import ClientFactory
from vaultmode.retry import poll_until
from vaultmode.types import VaultMode

LOGGER = logging.getLogger("vaultmode.lifecycle.startup")


@dataclass
class StartupResult:
    mode: VaultMode
    auto_unseal: bool
    unseal: UnsealReport | None = None
    guidance: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """False only when an automatic unseal was attempted and did not succeed."""
        return self.unseal is None or self.unseal.ok


class StartupHook:
    def __init__(
        self,
        settings: VaultModeSettings,
        configuration: ConfigurationStore,
        agent: AutoUnsealAgent,
        client_factory: ClientFactory,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._configuration = configuration
        self._agent = agent
        self._client_factory = client_factory
        self._sleep = sleep

    def launch_command(self) -> str:
        """Declared launch command, for the container entrypoint."""
        return self._configuration.load().launch_command

    def run(self) -> StartupResult:
        config = self._configuration.load()
        result = StartupResult(mode=config.mode, auto_unseal=config.auto_unseal)

        if config.mode is VaultMode.EPHEMERAL:
            LOGGER.info("Ephemeral mode - Vault starts unsealed, nothing to do")
            return result

        if not config.auto_unseal:
            result.guidance = [
                *manual_unseal_instructions(self._settings.vault_addr, self._settings.key_threshold),
                "Or enable automatic unsealing: vaultmode auto-unseal on",
            ]
            LOGGER.info("Durable mode with auto-unseal disabled - Vault stays sealed until unsealed manually")
            for line in result.guidance:
                LOGGER.info(f"  {line}")
            return result

        LOGGER.info("Durable mode with auto-unseal enabled - waiting for Vault...")
        with self._client_factory(None) as client:
            poll_until(
                client.is_reachable,
                attempts=self._settings.health_attempts,
                interval=self._settings.health_interval,
                backoff=self._settings.health_backoff,
                sleep=self._sleep,
                description="Vault",
            )

        result.unseal = self._agent.attempt_unseal()
        result.guidance = result.unseal.guidance
        return result
