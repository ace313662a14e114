from __future__ import annotations


class StoreError(RuntimeError):
    """Base error for durable store failures."""


class StoreReadError(StoreError):
    """A range scan or point read failed."""


class StoreWriteError(StoreError):
    """A write failed for a reason other than a CAS veto."""


class OptimisticLockError(StoreWriteError):
    """Raised when a conditional request loses a race with another writer."""


class MisuseError(ValueError):
    """Invalid configuration or call shape; raised synchronously."""


class KeyEncodingError(MisuseError):
    """A key cannot be represented inside its prefix range."""
