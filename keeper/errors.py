"""Exception types for infrastructure failures.

Business outcomes (not found, wrong owner, wrong state) are returned as
``CommandResult`` values, not raised. These exceptions cover the cases where
a collaborator itself failed.
"""

from __future__ import annotations


class KeeperError(Exception):
    pass


class ConfigurationError(KeeperError):
    pass


class StoreUnavailableError(KeeperError):
    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        message = f"Vault store unavailable during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class VaultExistsError(KeeperError):
    def __init__(self, vault_id: str) -> None:
        self.vault_id = vault_id
        super().__init__(f"Vault {vault_id} already exists")


class DeliveryError(KeeperError):
    """A notification or resource-share call failed. Always non-fatal."""

    def __init__(self, channel: str, target: str, cause: Exception | str) -> None:
        self.channel = channel
        self.target = target
        super().__init__(f"{channel} delivery to {target} failed: {cause}")


class ConcurrentUpdateError(KeeperError):
    """A row kept changing underneath a compare-and-set write."""

    def __init__(self, vault_id: str, attempts: int) -> None:
        self.vault_id = vault_id
        self.attempts = attempts
        super().__init__(f"Vault {vault_id} changed concurrently {attempts} times, giving up")
