"""
Project settings discovery using .vaultmode.yaml.

Settings are resolved once at the edge of the program (CLI or container) and passed
explicitly to every component. This is the only module that reads the process
environment (VAULT_ADDR, VAULT_TOKEN).
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from vaultmode.config.schemas import VaultModeSettings
from vaultmode.exceptions import VaultModeConfigurationError

LOGGER = logging.getLogger("vaultmode.config.settings")

SETTINGS_FILENAME = ".vaultmode.yaml"


def find_settings_file(project_root: Path | None = None) -> Path | None:
    """
    Find .vaultmode.yaml in the project root or parent directories.

    Args:
    ----
        project_root: Directory to start from (defaults to cwd)

    Returns:
    -------
        Path to .vaultmode.yaml or None if not found

    """
    current = project_root or Path.cwd()
    config_file = current / SETTINGS_FILENAME
    if config_file.exists():
        return config_file

    # Check parent directories (up to 3 levels)
    for _ in range(3):
        current = current.parent
        config_file = current / SETTINGS_FILENAME
        if config_file.exists():
            return config_file

    return None


def load_settings(project_root: Path | None = None, environ: Mapping[str, str] | None = None) -> VaultModeSettings:
    """
    Load project settings.

    Resolution order (later wins):
    1. Built-in defaults
    2. .vaultmode.yaml (relative paths resolved against its directory)
    3. VAULT_ADDR / VAULT_TOKEN from the environment

    Args:
    ----
        project_root: Directory to start discovery from (defaults to cwd)
        environ: Environment mapping (defaults to os.environ)

    Returns:
    -------
        Validated VaultModeSettings

    Raises:
    ------
        VaultModeConfigurationError: If the settings file is invalid

    Example:
    -------
        >>> settings = load_settings()
        >>> settings.vault_addr
        'http://localhost:8200'

    """
    root = project_root or Path.cwd()
    environ = os.environ if environ is None else environ

    config_file = find_settings_file(root)
    raw: dict = {}
    base = root

    if config_file is not None:
        try:
            with open(config_file) as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise VaultModeConfigurationError(f"Invalid YAML in {SETTINGS_FILENAME}: {config_file}\nError: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise VaultModeConfigurationError(f"{SETTINGS_FILENAME} must contain a YAML dictionary: {config_file}")

        raw = loaded
        base = config_file.parent
        LOGGER.debug(f"Loaded settings from {config_file}")
    else:
        LOGGER.debug(f"No {SETTINGS_FILENAME} found from {root}, using defaults")

    if environ.get("VAULT_ADDR"):
        raw["vault_addr"] = environ["VAULT_ADDR"]
    if environ.get("VAULT_TOKEN"):
        raw["vault_token"] = environ["VAULT_TOKEN"]

    try:
        settings = VaultModeSettings.model_validate(raw)
    except ValidationError as e:
        source = config_file or "defaults"
        raise VaultModeConfigurationError(f"Invalid vaultmode settings ({source}):\n{e}") from e

    return settings.resolve_paths(base)
