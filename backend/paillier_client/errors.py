"""Exception taxonomy shared by the crypto core and the key store."""


class PaillierError(Exception):
    """Base class for every error raised by this package."""


class KeyValidationError(PaillierError, ValueError):
    """Caller input was rejected before any work was done."""


class ArithmeticPreconditionError(PaillierError, ArithmeticError):
    """A number-theoretic precondition did not hold (logic defect upstream)."""


class KeyGenerationCancelled(PaillierError):
    """Prime search was cancelled between two attempts."""


class StorageError(PaillierError):
    """The key store transaction failed or aborted."""


class StorageUnavailableError(StorageError):
    """The key store backend could not be opened."""
