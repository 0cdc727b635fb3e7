"""
Response schemas for the Vault HTTP API endpoints used by vaultmode.

Each endpoint has an explicit model; VaultClient validates every response body
against its model and raises StoreDecodeError on mismatch.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _VaultResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HealthResponse(_VaultResponse):
    """GET /v1/sys/health"""

    initialized: bool
    sealed: bool
    standby: bool = False
    version: str | None = None


class SealStatus(_VaultResponse):
    """GET /v1/sys/seal-status and PUT /v1/sys/unseal"""

    initialized: bool = True
    sealed: bool
    progress: int = 0
    threshold: int = Field(default=0, alias="t")
    shares: int = Field(default=0, alias="n")
    type: str | None = None
    version: str | None = None


class InitResponse(_VaultResponse):
    """PUT /v1/sys/init"""

    keys: list[str] = Field(min_length=1)
    keys_base64: list[str] = Field(default_factory=list)
    root_token: str = Field(min_length=1)


class _KeyList(_VaultResponse):
    keys: list[str] = Field(default_factory=list)


class ListResponse(_VaultResponse):
    """LIST /v1/secret/metadata/<path> (GET with ?list=true)"""

    data: _KeyList


class _SecretData(_VaultResponse):
    data: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class SecretResponse(_VaultResponse):
    """GET /v1/secret/data/<path>"""

    data: _SecretData


class ErrorResponse(_VaultResponse):
    """Error body returned by Vault on non-2xx statuses."""

    errors: list[str] = Field(default_factory=list)
