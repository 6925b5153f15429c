"""Exception types raised by the indexing layer."""


class ContextError(Exception):
    """Base class for context engine errors."""


class StoreError(ContextError):
    """The persistence store is unavailable or a statement failed.

    Fatal to the surrounding operation: batch and bootstrap runs abort
    when they see it instead of counting it as a per-file failure.
    """


class ChunkingError(ContextError):
    """A chunker could not split a file."""


class EmbeddingError(ContextError):
    """The embedding backend failed or returned malformed vectors."""
