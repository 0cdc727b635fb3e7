"""
Vault HTTP API client.

Thin, stateless wrapper over httpx issuing the administrative calls vaultmode needs:
health, seal-status, init, unseal and KV v2 list/read/write under the "secret" mount.

Transport errors and unexpected responses are converted into typed vaultmode
exceptions here; httpx exceptions never escape this module.

Example:
    from vaultmode.clients import VaultClient

    with VaultClient("http://localhost:8200", token="root") as client:
        status = client.seal_status()
        if not status.sealed:
            client.write_secret("secret/dev/ALPHA", {"value": "x"})
            print(client.read_secret("secret/dev/ALPHA"))

"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from vaultmode.clients.schemas import (
    ErrorResponse,
    HealthResponse,
    InitResponse,
    ListResponse,
    SealStatus,
    SecretResponse,
)
from vaultmode.exceptions import (
    SecretNotFoundError,
    StoreDecodeError,
    StoreError,
    StorePermissionError,
    StoreResponseError,
    StoreSealedError,
    StoreUnreachableError,
)

LOGGER = logging.getLogger("vaultmode.clients.vault")

KV_MOUNT = "secret"

# /sys/health encodes state in the status code; every one of these carries a JSON body
HEALTH_STATUS_CODES = frozenset({200, 429, 472, 473, 501, 503})

ModelT = TypeVar("ModelT", bound=BaseModel)


def split_kv_path(path: str) -> str:
    """
    Strip the KV mount from an operator path.

    Args:
    ----
        path: Operator-facing path such as "secret/dev/ALPHA"

    Returns:
    -------
        Path relative to the mount ("dev/ALPHA")

    Raises:
    ------
        ValueError: If the path is not under the secret/ mount

    """
    cleaned = path.strip("/")
    prefix = f"{KV_MOUNT}/"
    if not cleaned.startswith(prefix) or cleaned == KV_MOUNT:
        raise ValueError(f"Secret path must be under '{prefix}': {path!r}")
    return cleaned[len(prefix) :]


class VaultClient:
    """
    Stateless client for the Vault HTTP API.

    Args:
    ----
        address: Vault address without the /v1 suffix (e.g. http://localhost:8200)
        token: Optional token sent as X-Vault-Token
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)

    """

    def __init__(
        self,
        address: str,
        token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.address = address.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

        headers = {"X-Vault-Token": token} if token else {}
        self._http = httpx.Client(
            base_url=f"{self.address}/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def with_token(self, token: str | None) -> "VaultClient":
        """Return a new client for the same address using another token."""
        return VaultClient(self.address, token=token, timeout=self._timeout, transport=self._transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "VaultClient":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise StoreUnreachableError(f"Timed out talking to Vault at {self.address} ({method} /v1/{url})") from e
        except httpx.TransportError as e:
            raise StoreUnreachableError(f"Cannot connect to Vault at {self.address}: {e}") from e

    @staticmethod
    def _errors(response: httpx.Response) -> list[str]:
        try:
            return ErrorResponse.model_validate(response.json()).errors
        except (ValueError, ValidationError):
            return []

    def _raise_for_status(self, response: httpx.Response, what: str) -> None:
        if response.is_success:
            return

        errors = self._errors(response)
        detail = "; ".join(errors) or response.reason_phrase
        status = response.status_code

        if status == 503 and any("sealed" in e.lower() for e in errors):
            raise StoreSealedError(f"Vault is sealed: cannot {what}")
        if status == 403:
            raise StorePermissionError(f"Permission denied: cannot {what} ({detail})")
        if status == 404:
            raise SecretNotFoundError(f"Not found: cannot {what}")
        raise StoreResponseError(f"Vault returned HTTP {status}: cannot {what} ({detail})", status, errors)

    @staticmethod
    def _decode(model: type[ModelT], response: httpx.Response, what: str) -> ModelT:
        try:
            payload = response.json()
        except ValueError as e:
            raise StoreDecodeError(f"Response to {what} is not JSON (HTTP {response.status_code})") from e
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise StoreDecodeError(f"Unexpected response to {what}: {e}") from e

    # ------------------------------------------------------------------
    # System endpoints
    # ------------------------------------------------------------------

    def health(self) -> HealthResponse:
        """
        Query /sys/health.

        Vault encodes its state in the status code (200 active, 429 standby,
        501 not initialized, 503 sealed); all of them are decoded.

        Raises
        ------
            StoreUnreachableError: If Vault cannot be reached
            StoreResponseError: On any other status
            StoreDecodeError: If the body does not match the schema

        """
        response = self._request("GET", "sys/health")
        if response.status_code not in HEALTH_STATUS_CODES:
            self._raise_for_status(response, "query health")
        return self._decode(HealthResponse, response, "sys/health")

    def is_reachable(self) -> bool:
        """Return True if Vault answers its health endpoint."""
        try:
            self.health()
        except StoreUnreachableError:
            return False
        except StoreError as e:
            LOGGER.debug(f"Vault answered health check with an error: {e}")
        return True

    def seal_status(self) -> SealStatus:
        """Query /sys/seal-status."""
        response = self._request("GET", "sys/seal-status")
        self._raise_for_status(response, "query seal status")
        return self._decode(SealStatus, response, "sys/seal-status")

    def init(self, shares: int, threshold: int) -> InitResponse:
        """
        Initialize Vault via /sys/init.

        The response contains key material; callers must persist it and must
        never log it.
        """
        response = self._request(
            "PUT",
            "sys/init",
            json={"secret_shares": shares, "secret_threshold": threshold},
        )
        self._raise_for_status(response, "initialize Vault")
        return self._decode(InitResponse, response, "sys/init")

    def unseal(self, key: str) -> SealStatus:
        """Submit one unseal share via /sys/unseal and return the updated seal status."""
        response = self._request("PUT", "sys/unseal", json={"key": key})
        self._raise_for_status(response, "submit unseal key")
        return self._decode(SealStatus, response, "sys/unseal")

    # ------------------------------------------------------------------
    # KV v2 endpoints
    # ------------------------------------------------------------------

    def list_secrets(self, namespace: str) -> list[str]:
        """
        List every secret path below a namespace, descending into sub-folders.

        Args:
        ----
            namespace: Operator path such as "secret/dev"

        Returns:
        -------
            Full operator paths ("secret/dev/ALPHA", "secret/dev/app/DB_URL"),
            empty when the namespace does not exist

        """
        relative = split_kv_path(namespace)
        response = self._request("GET", f"{KV_MOUNT}/metadata/{relative}", params={"list": "true"})
        if response.status_code == 404:
            return []
        self._raise_for_status(response, f"list {namespace}")
        listing = self._decode(ListResponse, response, f"list {namespace}")

        paths: list[str] = []
        for key in listing.data.keys:
            child = f"{namespace.strip('/')}/{key.strip('/')}"
            if key.endswith("/"):
                paths.extend(self.list_secrets(child))
            else:
                paths.append(child)
        return paths

    def read_secret(self, path: str) -> dict[str, Any]:
        """
        Read the current version of a secret.

        Raises
        ------
            SecretNotFoundError: If the path does not exist or its latest version is deleted
            StoreSealedError: If Vault is sealed

        """
        relative = split_kv_path(path)
        response = self._request("GET", f"{KV_MOUNT}/data/{relative}")
        self._raise_for_status(response, f"read {path}")
        secret = self._decode(SecretResponse, response, f"read {path}")
        if secret.data.data is None:
            raise SecretNotFoundError(f"Not found: {path} has no current version")
        return secret.data.data

    def write_secret(self, path: str, data: dict[str, Any]) -> None:
        """Write a new version of a secret."""
        relative = split_kv_path(path)
        response = self._request("POST", f"{KV_MOUNT}/data/{relative}", json={"data": data})
        self._raise_for_status(response, f"write {path}")
        LOGGER.debug(f"Wrote {path} ({len(data)} keys)")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"VaultClient(address='{self.address}', token={'set' if self._token else 'unset'})"
