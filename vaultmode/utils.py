"""Utility functions for vaultmode."""

import logging
import os
import shutil
import stat
import subprocess
from pathlib import Path

LOGGER = logging.getLogger("vaultmode.utils")

OWNER_ONLY_FILE = 0o600
OWNER_ONLY_DIR = 0o700


def run_command(
    cmd: list[str],
    check: bool = True,
    capture: bool = True,
    env: dict[str, str] | None = None,
    timeout: int | None = None,
) -> subprocess.CompletedProcess:
    """
    Run a command with consistent handling.

    Args:
    ----
        cmd: Command and arguments as a list
        check: If True, raise CalledProcessError on non-zero exit
        capture: If True, capture stdout/stderr
        env: Optional environment variables (merged with os.environ)
        timeout: Optional timeout in seconds

    Returns:
    -------
        CompletedProcess instance with returncode, stdout, stderr

    Raises:
    ------
        subprocess.CalledProcessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout is exceeded
        FileNotFoundError: If the executable does not exist

    Example:
    -------
        ```python
        result = run_command(["docker", "compose", "ps"], check=False)
        if result.returncode != 0:
            print(f"Command failed: {result.stderr}")
        ```

    """
    command_env = os.environ.copy()
    if env:
        command_env.update(env)

    LOGGER.debug(f"Running command: {' '.join(cmd)}")

    return subprocess.run(
        cmd,
        capture_output=capture,
        text=True,
        check=check,
        env=command_env,
        timeout=timeout,
    )


def file_mode(path: Path) -> int:
    """Return the permission bits of a file (e.g. 0o600)."""
    return stat.S_IMODE(path.stat().st_mode)


def is_owner_only(path: Path) -> bool:
    """True if neither group nor others have any permission on path."""
    return file_mode(path) & 0o077 == 0


def directory_size(path: Path) -> int:
    """Total size in bytes of regular files below path (0 if it does not exist)."""
    if not path.exists():
        return 0
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file() and not item.is_symlink():
                total += item.stat().st_size
        except OSError:
            continue
    return total


def format_size(num_bytes: int) -> str:
    """Format a byte count the way `du -h` does (1.5K, 12M)."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}G"


def which(binary: str) -> str | None:
    """Locate an executable on PATH."""
    return shutil.which(binary)
