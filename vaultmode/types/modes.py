"""Vault storage mode type definitions."""

from enum import Enum


class VaultMode(str, Enum):
    """
    Vault storage modes.

    EPHEMERAL runs Vault in dev mode: in-memory storage, auto-initialized and
    auto-unsealed by the server itself, lost on restart.

    DURABLE runs Vault with raft storage: must be initialized and unsealed
    explicitly, survives restarts.
    """

    EPHEMERAL = "ephemeral"
    DURABLE = "durable"

    @classmethod
    def from_string(cls, value: str) -> "VaultMode":
        """
        Get mode from string.

        Args:
        ----
            value: Mode string (case-insensitive). The legacy name "persistent"
                is accepted for DURABLE.

        Returns:
        -------
            Corresponding VaultMode

        Raises:
        ------
            ValueError: If value doesn't match any mode

        Example:
        -------
            >>> VaultMode.from_string('Durable')
            <VaultMode.DURABLE: 'durable'>
            >>> VaultMode.from_string('persistent')
            <VaultMode.DURABLE: 'durable'>

        """
        value_lower = value.lower().strip()

        if value_lower in _ALIASES:
            return _ALIASES[value_lower]

        try:
            return cls(value_lower)
        except ValueError:
            pass

        valid_modes = ", ".join(m.value for m in cls)
        raise ValueError(f"Invalid mode: '{value}'. Valid modes: {valid_modes}")

    @classmethod
    def all_modes(cls) -> list["VaultMode"]:
        """Get list of all modes."""
        return list(cls)

    @property
    def requires_unseal(self) -> bool:
        """Whether the store must be initialized and unsealed explicitly in this mode."""
        return self is VaultMode.DURABLE

    def other(self) -> "VaultMode":
        """Return the opposite mode."""
        return VaultMode.EPHEMERAL if self is VaultMode.DURABLE else VaultMode.DURABLE


_ALIASES = {
    "persistent": VaultMode.DURABLE,
    "raft": VaultMode.DURABLE,
    "dev": VaultMode.EPHEMERAL,
}
