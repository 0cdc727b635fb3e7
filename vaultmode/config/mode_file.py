"""
Declared mode configuration (vault-mode.conf).

The file is a flat list of KEY="value" lines read by the Vault container's startup
wrapper as well as by vaultmode:

    MODE="durable"
    AUTO_UNSEAL="false"
    LAUNCH_COMMAND="server -config=/vault/config/vault-persistent.hcl"

ConfigurationStore is the only accessor for this file. The ModeController owns it and
hands it to the other components; nothing else opens the file directly.
"""

import logging
import os
import re
from pathlib import Path

from vaultmode.config.schemas import EPHEMERAL_COMMAND, ModeConfiguration
from vaultmode.exceptions import VaultModeConfigurationError
from vaultmode.types import VaultMode

LOGGER = logging.getLogger("vaultmode.config.mode_file")

_LINE_PATTERN = re.compile(r"^(?P<key>[A-Z_][A-Z0-9_]*)=(?P<value>.*)$")

# Older files written by the shell tooling used these names
_LEGACY_KEYS = {
    "VAULT_MODE": "MODE",
    "VAULT_COMMAND": "LAUNCH_COMMAND",
}

_TRUE_VALUES = {"true", "yes", "1", "on"}
_FALSE_VALUES = {"false", "no", "0", "off", ""}


def parse_mode_file(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY="value" lines into a dictionary.

    Blank lines and # comments are skipped. Values may be double-quoted,
    single-quoted or bare. Legacy key names are normalized.

    Raises
    ------
        VaultModeConfigurationError: On a line that is not KEY=value

    """
    values: dict[str, str] = {}
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()

        match = _LINE_PATTERN.match(line)
        if not match:
            raise VaultModeConfigurationError(f"Malformed line {lineno} in {source}: {raw_line!r}")

        key = _LEGACY_KEYS.get(match["key"], match["key"])
        value = match["value"].strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key] = value

    return values


def _parse_bool(value: str, key: str, source: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise VaultModeConfigurationError(f"Invalid boolean for {key} in {source}: {value!r}")


def render_mode_file(config: ModeConfiguration) -> str:
    """Render a ModeConfiguration as KEY="value" lines."""
    if '"' in config.launch_command or "\n" in config.launch_command:
        raise VaultModeConfigurationError(
            f"LAUNCH_COMMAND cannot contain quotes or newlines: {config.launch_command!r}"
        )

    return (
        f'MODE="{config.mode.value}"\n'
        f'AUTO_UNSEAL="{"true" if config.auto_unseal else "false"}"\n'
        f'LAUNCH_COMMAND="{config.launch_command}"\n'
    )


class ConfigurationStore:
    """
    Reads and writes the declared mode configuration.

    Example:
    -------
        ```python
        store = ConfigurationStore(settings.mode_file)

        config = store.load()
        print(config.mode)  # VaultMode.EPHEMERAL

        store.set_mode(VaultMode.DURABLE, launch_command=settings.durable_command)
        ```

    """

    def __init__(self, path: Path, default_launch_command: str = EPHEMERAL_COMMAND, default_auto_unseal: bool = False):
        self.path = path
        self._default_launch_command = default_launch_command
        self._default_auto_unseal = default_auto_unseal

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ModeConfiguration:
        """
        Load the declared configuration.

        Returns
        -------
            ModeConfiguration. When the file does not exist the defaults are
            returned with present=False (ephemeral, auto-unseal off).

        Raises
        ------
            VaultModeConfigurationError: If the file is malformed

        """
        if not self.exists():
            LOGGER.debug(f"Mode file not found, using defaults: {self.path}")
            return ModeConfiguration(
                launch_command=self._default_launch_command, auto_unseal=self._default_auto_unseal, present=False
            )

        try:
            text = self.path.read_text()
        except OSError as e:
            raise VaultModeConfigurationError(f"Cannot read mode file {self.path}: {e}") from e

        values = parse_mode_file(text, source=str(self.path))

        try:
            mode = VaultMode.from_string(values.get("MODE", VaultMode.EPHEMERAL.value))
        except ValueError as e:
            raise VaultModeConfigurationError(f"{e} (in {self.path})") from e

        auto_unseal = _parse_bool(values.get("AUTO_UNSEAL", "false"), "AUTO_UNSEAL", str(self.path))
        launch_command = values.get("LAUNCH_COMMAND") or self._default_launch_command

        return ModeConfiguration(mode=mode, auto_unseal=auto_unseal, launch_command=launch_command)

    def ensure_writable(self) -> None:
        """
        Verify the configuration can be written, without changing it.

        Raises
        ------
            VaultModeConfigurationError: If the directory cannot be created or written

        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VaultModeConfigurationError(f"Cannot create configuration directory {self.path.parent}: {e}") from e

        if not os.access(self.path.parent, os.W_OK):
            raise VaultModeConfigurationError(f"Configuration directory is not writable: {self.path.parent}")
        if self.exists() and not os.access(self.path, os.W_OK):
            raise VaultModeConfigurationError(f"Mode file is not writable: {self.path}")

    def save(self, config: ModeConfiguration) -> ModeConfiguration:
        """
        Write the configuration atomically with owner-only permissions.

        The content goes to a sibling temporary file that is hardened to 0600 and
        then renamed over the real file, so readers never see a partial write.

        Raises
        ------
            VaultModeConfigurationError: If the file cannot be written

        """
        content = render_mode_file(config)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise VaultModeConfigurationError(f"Cannot write mode file {self.path}: {e}") from e

        LOGGER.debug(f"Wrote mode file {self.path}: mode={config.mode.value} auto_unseal={config.auto_unseal}")
        return config.model_copy(update={"present": True})

    def set_mode(self, mode: VaultMode, launch_command: str | None = None) -> ModeConfiguration:
        """Declare a new mode, optionally with its launch command. Auto-unseal is preserved."""
        current = self.load()
        updated = current.model_copy(
            update={"mode": mode, "launch_command": launch_command or current.launch_command}
        )
        LOGGER.info(f"Declared mode: {current.mode.value} → {mode.value}")
        return self.save(updated)

    def set_launch_command(self, launch_command: str) -> ModeConfiguration:
        """Replace the launch command, leaving the declared mode unchanged."""
        current = self.load()
        return self.save(current.model_copy(update={"launch_command": launch_command}))

    def set_auto_unseal(self, enabled: bool) -> ModeConfiguration:
        """Allow or forbid automatic unsealing on store start."""
        current = self.load()
        LOGGER.info(f"Auto-unseal {'enabled' if enabled else 'disabled'}")
        return self.save(current.model_copy(update={"auto_unseal": enabled}))

    def __repr__(self) -> str:
        """Return string representation."""
        return f"ConfigurationStore(path='{self.path}')"
