"""
Threshold unsealing of a durable Vault.

submit_unseal_shares() is the shared protocol step (also used by the migration
engine right after initialization). AutoUnsealAgent wraps it for store start-up:
it reads stored key material, never creates or rewrites it, and reports a typed
outcome plus the manual recovery commands when it cannot act.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from vaultmode.clients.schemas import SealStatus
from vaultmode.clients.vault import VaultClient
from vaultmode.exceptions import KeyMaterialError, StoreError, StoreUnreachableError
from vaultmode.lifecycle.keys import UnsealKeyStore
from vaultmode.protocols import ClientFactory

LOGGER = logging.getLogger("vaultmode.lifecycle.unseal")


class UnsealOutcome(str, Enum):
    ALREADY_UNSEALED = "already_unsealed"
    UNSEALED = "unsealed"
    INSUFFICIENT_KEYS = "insufficient_keys"
    UNREACHABLE = "unreachable"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self in (UnsealOutcome.ALREADY_UNSEALED, UnsealOutcome.UNSEALED)


@dataclass
class UnsealReport:
    outcome: UnsealOutcome
    progress: int = 0
    threshold: int = 0
    keys_submitted: int = 0
    message: str = ""
    guidance: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome.ok


def manual_unseal_instructions(vault_addr: str, threshold: int = 3) -> list[str]:
    """Commands an operator runs to unseal by hand."""
    return [
        f"export VAULT_ADDR={vault_addr}",
        f"vault operator unseal   # repeat {threshold} times, each time with a different key",
        "vault status            # Sealed should read false",
    ]


def submit_unseal_shares(client: VaultClient, shares: Sequence[str], threshold: int) -> tuple[SealStatus, int]:
    """
    Submit shares one at a time until the store unseals or threshold shares are used.

    Args:
    ----
        client: Client for the sealed store (no token needed)
        shares: Key shares in submission order
        threshold: Number of shares required

    Returns:
    -------
        (last seal status, number of shares submitted)

    Raises:
    ------
        ValueError: If fewer than threshold shares are given
        StoreError: If Vault rejects a share or cannot be reached

    """
    if threshold < 1 or len(shares) < threshold:
        raise ValueError(f"Insufficient unseal keys (need {threshold}, have {len(shares)})")

    for submitted, share in enumerate(shares[:threshold], start=1):
        LOGGER.info(f"Unsealing with key {submitted}/{threshold}...")
        status = client.unseal(share)
        LOGGER.info(f"Unseal progress: {status.progress}/{status.threshold or threshold}")
        if not status.sealed:
            LOGGER.info("✓ Vault unsealed")
            return status, submitted

    return status, threshold


class AutoUnsealAgent:
    """
    Unseals a durable Vault with stored key shares.

    Example:
    -------
        ```python
        agent = AutoUnsealAgent(client_factory, UnsealKeyStore(settings.keys_file))
        report = agent.attempt_unseal()
        if not report.ok:
            print("\n".join(report.guidance))
        ```

    """

    def __init__(self, client_factory: ClientFactory, key_store: UnsealKeyStore, vault_addr: str = ""):
        self._client_factory = client_factory
        self._key_store = key_store
        self._vault_addr = vault_addr

    def _report(self, outcome: UnsealOutcome, message: str, guidance: list[str] | None = None, **kwargs) -> UnsealReport:
        log = LOGGER.info if outcome.ok else LOGGER.error
        log(message)
        return UnsealReport(outcome=outcome, message=message, guidance=guidance or [], **kwargs)

    def attempt_unseal(self) -> UnsealReport:
        """
        Unseal the store if it is sealed.

        Returns
        -------
            UnsealReport whose outcome is one of ALREADY_UNSEALED, UNSEALED,
            INSUFFICIENT_KEYS, UNREACHABLE or FAILED

        """
        client = self._client_factory(None)
        address = self._vault_addr or client.address
        manual = manual_unseal_instructions(address)

        with client:
            if not client.is_reachable():
                return self._report(
                    UnsealOutcome.UNREACHABLE,
                    f"Cannot connect to Vault at {address}",
                    ["Ensure the Vault container is running, then retry: vaultmode unseal"],
                )

            try:
                status = client.seal_status()
            except StoreUnreachableError as e:
                return self._report(UnsealOutcome.UNREACHABLE, str(e), ["Retry once Vault is up: vaultmode unseal"])
            except StoreError as e:
                return self._report(UnsealOutcome.FAILED, f"Failed to query Vault seal status: {e}", manual)

            if not status.initialized:
                return self._report(
                    UnsealOutcome.FAILED,
                    "Vault is not initialized - there is nothing to unseal",
                    ["Initialize durable storage with: vaultmode switch durable"],
                )

            if not status.sealed:
                return self._report(UnsealOutcome.ALREADY_UNSEALED, "✓ Vault is already unsealed")

            LOGGER.info("Vault is sealed. Beginning unseal process...")

            try:
                key_set = self._key_store.load()
            except KeyMaterialError as e:
                return self._report(
                    UnsealOutcome.INSUFFICIENT_KEYS,
                    f"Cannot auto-unseal: {e}",
                    manual,
                    threshold=status.threshold,
                    progress=status.progress,
                )

            threshold = status.threshold or key_set.secret_threshold
            shares = key_set.shares()
            if len(shares) < threshold:
                return self._report(
                    UnsealOutcome.INSUFFICIENT_KEYS,
                    f"Insufficient unseal keys found (need {threshold}, have {len(shares)})",
                    [f"Unseal keys file may be corrupted or incomplete: {self._key_store.path}", *manual],
                    threshold=threshold,
                    progress=status.progress,
                )

            if not self._key_store.is_secure():
                LOGGER.warning(f"⚠️  Unseal keys file has insecure permissions: {oct(self._key_store.permissions() or 0)}")
                LOGGER.warning(f"⚠️  Recommended: chmod 600 {self._key_store.path}")

            LOGGER.info(f"Found {len(shares)} unseal keys (threshold: {threshold})")

            try:
                final, submitted = submit_unseal_shares(client, shares, threshold)
            except StoreUnreachableError as e:
                return self._report(UnsealOutcome.UNREACHABLE, f"Lost connection while unsealing: {e}", manual)
            except StoreError as e:
                return self._report(UnsealOutcome.FAILED, f"Vault rejected an unseal key: {e}", manual)

            if not final.sealed:
                return self._report(
                    UnsealOutcome.UNSEALED,
                    f"✓ Vault unsealed successfully at {address}",
                    progress=final.progress,
                    threshold=threshold,
                    keys_submitted=submitted,
                )

            return self._report(
                UnsealOutcome.FAILED,
                f"Failed to unseal Vault after using {submitted} keys",
                [
                    "This may indicate incorrect unseal keys, or that Vault was re-initialized "
                    "without updating the keys file.",
                    *manual,
                ],
                progress=final.progress,
                threshold=threshold,
                keys_submitted=submitted,
            )
