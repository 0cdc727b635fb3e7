"""
vaultmode exception classes.

This module defines custom exceptions for vaultmode to avoid masking built-in Python errors
and to provide clear, specific error handling for the different failure scenarios of a
local Vault lifecycle (unreachable store, sealed store, bad key material, bad backups).

All store-facing errors inherit from StoreError. Transport-level httpx errors are converted
into these types at the client boundary and never escape it.
"""


class VaultModeError(Exception):
    """
    Base exception for all vaultmode errors.

    All vaultmode exceptions inherit from this, allowing callers to catch all vaultmode-specific
    errors with a single except clause while not catching unrelated Python errors.
    """

    pass


class VaultModeConfigurationError(VaultModeError):
    """
    Raised when there is an error in vaultmode configuration.

    This includes a malformed .vaultmode.yaml, a malformed vault-mode.conf, or a
    configuration file that cannot be written.
    """

    pass


class StoreError(VaultModeError):
    """Base class for errors raised at the Vault HTTP API boundary."""

    pass


class StoreUnreachableError(StoreError):
    """
    Raised when the Vault server cannot be reached (connection refused, DNS, timeout).

    Example:
    -------
        >>> client = VaultClient("http://localhost:8200")
        >>> client.seal_status()  # Vault container stopped
        StoreUnreachableError: Cannot connect to Vault at http://localhost:8200 ...

    """

    pass


class StoreSealedError(StoreError):
    """
    Raised when a sealed Vault rejects a data operation.

    Not retried: the store must be unsealed first.
    """

    pass


class StorePermissionError(StoreError):
    """Raised when Vault rejects the token (HTTP 403)."""

    pass


class SecretNotFoundError(StoreError):
    """Raised when a secret path does not exist (HTTP 404)."""

    pass


class StoreResponseError(StoreError):
    """
    Raised when Vault answers with an unexpected HTTP status.

    Attributes
    ----------
        status_code: HTTP status returned by Vault
        errors: Error strings from the Vault response body, if any

    """

    def __init__(self, message: str, status_code: int | None = None, errors: list[str] | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class StoreDecodeError(StoreError):
    """Raised when a Vault response body does not match the schema of its endpoint."""

    pass


class KeyMaterialError(VaultModeError):
    """
    Raised when unseal key material is missing, malformed, or conflicts with the store.

    Example:
    -------
        A key file exists but the durable store reports it is not initialized:
        the keys belong to a previous raft database and must not be reused.

    """

    pass


class BackupError(VaultModeError):
    """Raised when a backup directory is missing or incomplete (no metadata file)."""

    pass


class ServiceControlError(VaultModeError):
    """Raised when the Vault service process cannot be controlled."""

    pass
