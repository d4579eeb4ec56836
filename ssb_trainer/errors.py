from __future__ import annotations


class TrainerError(Exception):
    """Base class for trainer failures that the UI turns into notifications."""


class EmptyPoolError(TrainerError):
    """No eligible stimuli exist for the requested test kind."""

    def __init__(self, kind: str, collection: str | None = None) -> None:
        self.kind = str(kind)
        self.collection = collection
        where = f" in {collection!r}" if collection else ""
        super().__init__(f"No {self.kind.upper()} content available{where}. Please contact admin.")


class InsufficientPoolWarning(UserWarning):
    """Fewer stimuli than requested; the session proceeds with what exists."""

    def __init__(self, requested: int, available: int) -> None:
        self.requested = int(requested)
        self.available = int(available)
        super().__init__(f"Only {self.available} available ({self.requested} requested).")


class PersistFailure(TrainerError):
    """Writing an attempt record to the document store failed."""

    def __init__(self, collection: str, reason: str) -> None:
        self.collection = collection
        self.reason = reason
        super().__init__(f"Failed to save attempt to {collection!r}: {reason}")
