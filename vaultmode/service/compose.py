"""
Docker Compose service runner for the Vault container.

Implements the ServiceRunner protocol by shelling out to `docker compose`. The
launch command is handed to compose as VAULT_COMMAND, which the compose file
interpolates into the container command.
"""

import logging
import subprocess
from pathlib import Path

from vaultmode.protocols import StartOutcome, StopOutcome
from vaultmode.utils import run_command

LOGGER = logging.getLogger("vaultmode.service.compose")


class ComposeServiceRunner:
    """
    Controls the Vault service defined in a docker compose file.

    Example:
    -------
        ```python
        runner = ComposeServiceRunner(Path(".devcontainer/docker-compose.dev.yml"), "vault-dev")

        if runner.stop().ok:
            runner.start("server -config=/vault/config/vault-persistent.hcl")
        ```

    """

    def __init__(self, compose_file: Path, service_name: str, timeout: int = 60):
        self.compose_file = compose_file
        self.service_name = service_name
        self._timeout = timeout

    def _compose(self, *args: str) -> list[str]:
        return ["docker", "compose", "-f", str(self.compose_file), *args]

    def is_running(self) -> bool | None:
        """
        Check whether the Vault service container is running.

        Returns
        -------
            True/False, or None if docker is not accessible

        """
        try:
            result = run_command(
                self._compose("ps", "--status", "running", "--services"),
                check=False,
                timeout=self._timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            LOGGER.debug(f"Docker not accessible: {e}")
            return None

        if result.returncode != 0:
            LOGGER.debug(f"docker compose ps failed: {result.stderr.strip()}")
            return None

        running = {line.strip() for line in result.stdout.splitlines() if line.strip()}
        return self.service_name in running

    def stop(self) -> StopOutcome:
        """
        Stop the Vault service.

        Distinguishes "already stopped" (NOT_RUNNING) from a failed stop (FAILED)
        and from docker being unavailable (UNAVAILABLE).
        """
        running = self.is_running()
        if running is None:
            LOGGER.error("Docker not accessible - cannot stop Vault")
            return StopOutcome.UNAVAILABLE
        if not running:
            LOGGER.info(f"Vault service '{self.service_name}' is not running")
            return StopOutcome.NOT_RUNNING

        LOGGER.info(f"Stopping Vault service '{self.service_name}'...")
        try:
            run_command(self._compose("stop", self.service_name), timeout=self._timeout)
        except subprocess.CalledProcessError as e:
            LOGGER.error(f"✗ Failed to stop Vault service: {(e.stderr or '').strip()}")
            return StopOutcome.FAILED
        except subprocess.TimeoutExpired:
            LOGGER.error(f"✗ Timed out stopping Vault service after {self._timeout}s")
            return StopOutcome.FAILED
        except FileNotFoundError:
            return StopOutcome.UNAVAILABLE

        LOGGER.info("✓ Vault service stopped")
        return StopOutcome.STOPPED

    def start(self, launch_command: str) -> StartOutcome:
        """Start (or recreate) the Vault service with the given launch command."""
        LOGGER.info(f"Starting Vault service '{self.service_name}': vault {launch_command}")
        try:
            run_command(
                self._compose("up", "-d", self.service_name),
                env={"VAULT_COMMAND": launch_command},
                timeout=self._timeout,
            )
        except FileNotFoundError:
            LOGGER.error("Docker not accessible - cannot start Vault")
            return StartOutcome.UNAVAILABLE
        except subprocess.CalledProcessError as e:
            LOGGER.error(f"✗ Failed to start Vault service: {(e.stderr or '').strip()}")
            return StartOutcome.FAILED
        except subprocess.TimeoutExpired:
            LOGGER.error(f"✗ Timed out starting Vault service after {self._timeout}s")
            return StartOutcome.FAILED

        LOGGER.info("✓ Vault service started")
        return StartOutcome.STARTED

    def describe(self) -> str:
        return f"docker compose -f {self.compose_file} up -d {self.service_name}"

    def __repr__(self) -> str:
        """Return string representation."""
        return f"ComposeServiceRunner(compose_file='{self.compose_file}', service='{self.service_name}')"
