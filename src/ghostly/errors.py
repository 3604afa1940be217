"""Exception taxonomy for Ghostly Memory Bank."""


class GhostlyError(Exception):
    """Base class for all errors raised by ghostly."""


class ConfigurationError(GhostlyError):
    """Settings file unreadable, malformed, or holding invalid values."""


class ProviderError(GhostlyError):
    """Embedding generation failed (model load, network, timeout).

    Recovered inside the retrieval pipeline by falling back to lexical search.
    """


class DimensionMismatchError(ProviderError):
    """Cosine similarity requested for vectors of unequal length."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class StoreError(GhostlyError):
    """Persistence failure in the episode store."""
