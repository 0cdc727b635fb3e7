"""
Unseal key material storage (vault-unseal-keys.json).

The key file is written exactly once, when a durable store is first initialized, and
is only read afterwards. It is removed solely by an explicit reset (or retired into a
backup directory when durable storage is retired). Key material is never logged; use
preview_key() for diagnostics.
"""

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from vaultmode.clients.schemas import InitResponse
from vaultmode.config.schemas import UnsealKeySet, preview_key
from vaultmode.exceptions import KeyMaterialError
from vaultmode.utils import OWNER_ONLY_FILE, file_mode, is_owner_only

LOGGER = logging.getLogger("vaultmode.lifecycle.keys")


class UnsealKeyStore:
    """
    Manages the unseal key file.

    Example:
    -------
        ```python
        store = UnsealKeyStore(settings.keys_file)

        if store.exists():
            key_set = store.load()
            print(key_set)  # UnsealKeySet(shares=5, threshold=3, root_token='hvs....', ...)
        ```

    """

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> UnsealKeySet:
        """
        Load and validate the key file.

        Raises
        ------
            KeyMaterialError: If the file is missing, not JSON, or not a valid key set

        """
        if not self.exists():
            raise KeyMaterialError(f"Unseal keys file not found: {self.path}")

        try:
            payload = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise KeyMaterialError(f"Unseal keys file is not valid JSON: {self.path}\nError: {e}") from e

        if not isinstance(payload, dict):
            raise KeyMaterialError(f"Unseal keys file must contain a JSON object: {self.path}")

        try:
            key_set = UnsealKeySet.model_validate(payload)
        except ValidationError as e:
            raise KeyMaterialError(f"Unseal keys file is malformed: {self.path}\n{e}") from e

        LOGGER.debug(f"Loaded unseal keys from {self.path}: {key_set}")
        return key_set

    def save(self, key_set: UnsealKeySet) -> Path:
        """
        Persist a new key set with owner-only permissions.

        The file is created exclusively: existing key material is never overwritten.

        Raises
        ------
            KeyMaterialError: If a key file already exists or cannot be written

        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = key_set.model_dump_json(indent=2)

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, OWNER_ONLY_FILE)
        except FileExistsError as e:
            raise KeyMaterialError(
                f"Refusing to overwrite existing unseal keys file: {self.path}\n"
                "Existing key material is never rewritten. Run 'vaultmode reset' to start over."
            ) from e
        except OSError as e:
            raise KeyMaterialError(f"Cannot create unseal keys file {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            # umask may have masked bits on creation; harden explicitly
            os.chmod(self.path, OWNER_ONLY_FILE)
        except OSError as e:
            self.path.unlink(missing_ok=True)
            raise KeyMaterialError(f"Cannot write unseal keys file {self.path}: {e}") from e

        LOGGER.info(
            f"✓ Unseal keys saved to {self.path} ({len(key_set.keys)} shares, "
            f"threshold {key_set.secret_threshold}, root token {preview_key(key_set.root_token)})"
        )
        return self.path

    def permissions(self) -> int | None:
        """Return the key file's permission bits, or None if it does not exist."""
        if not self.exists():
            return None
        return file_mode(self.path)

    def is_secure(self) -> bool:
        """True if the key file exists and only its owner can access it."""
        return self.exists() and is_owner_only(self.path)

    def retire(self, destination: Path) -> Path | None:
        """
        Move the key file to destination (inside a backup directory).

        Returns
        -------
            New path, or None if there was no key file

        """
        if not self.exists():
            return None
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self.path), str(destination))
        os.chmod(destination, OWNER_ONLY_FILE)
        LOGGER.info(f"Retired unseal keys to {destination}")
        return destination

    def destroy(self) -> bool:
        """Delete the key file. Only used by an explicit reset."""
        if not self.exists():
            return False
        self.path.unlink()
        LOGGER.warning(f"Deleted unseal keys file: {self.path}")
        return True

    def __repr__(self) -> str:
        """Return string representation."""
        return f"UnsealKeyStore(path='{self.path}', present={self.exists()})"


def key_set_from_init(init: InitResponse, shares: int, threshold: int) -> UnsealKeySet:
    """Build the persisted key set from a /sys/init response."""
    return UnsealKeySet(
        keys=init.keys,
        keys_base64=init.keys_base64,
        root_token=init.root_token,
        created_at=datetime.now(timezone.utc),
        secret_shares=shares,
        secret_threshold=threshold,
    )
