"""
Exception hierarchy for the shielded wallet.

Internal categories drive logging and retry policy. Callers of the wallet
service only ever see WalletOperationError, which carries a human-readable
cause and chains the internal error.
"""

from __future__ import annotations


class ShieldWalletError(Exception):
    """Base class for all wallet errors."""


class ChainServiceError(ShieldWalletError):
    """Transient failure talking to the remote chain service."""

    def __init__(
        self,
        operation: str,
        message: str,
        start_height: int | None = None,
        end_height: int | None = None,
    ):
        self.operation = operation
        self.start_height = start_height
        self.end_height = end_height
        context = operation
        if start_height is not None and end_height is not None:
            context = f"{operation} [{start_height}, {end_height}]"
        elif start_height is not None:
            context = f"{operation} at height {start_height}"
        super().__init__(f"{context}: {message}")


class TreeStateUnavailableError(ChainServiceError):
    """The service could not return a note commitment tree snapshot."""


class StoreError(ShieldWalletError):
    """Embedded store failure, wrapped with the operation that hit it."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class CheckpointConflictError(ShieldWalletError):
    """A checkpoint at this height already exists with a different tree state."""

    def __init__(self, pool: str, height: int, detail: str = ""):
        self.pool = pool
        self.height = height
        message = f"Checkpoint conflict in {pool} tree at height {height}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class AccountMismatchError(ShieldWalletError):
    """The store already holds an account with a different viewing key."""


class InsufficientFundsError(ShieldWalletError):
    def __init__(self, needed: int, available: int):
        self.needed = needed
        self.available = available
        super().__init__(f"Insufficient funds: need {needed}, have {available}")


class InvalidAddressError(ShieldWalletError):
    """The destination is not a decodable shielded address."""


class AddressNetworkMismatchError(InvalidAddressError):
    """The destination address belongs to another network."""


class MemoTooLongError(ShieldWalletError):
    pass


class ProofGenerationError(ShieldWalletError):
    """Building or proving a transaction failed."""


class BroadcastRejectedError(ShieldWalletError):
    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Transaction rejected (code {code}): {reason}")


class WalletOperationError(ShieldWalletError):
    """The single user-visible failure of a balance or send request."""

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(cause)
