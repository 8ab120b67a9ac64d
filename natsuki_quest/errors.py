from __future__ import annotations


class GameNotFound(ValueError):
    pass


class TurnInProgress(ValueError):
    pass


class StoreUnavailable(RuntimeError):
    """The keyed store could not be read or written.

    Raised for transport errors and for blobs that no longer decode into a
    StateAggregate. Callers decide how to degrade; it is never swallowed here.
    """


class GenerationUnavailable(RuntimeError):
    """The generation service timed out, was unreachable, or returned junk."""


class CheckpointMissing(LookupError):
    pass


class LoopRegression(ValueError):
    """A save would move the loop counter backwards; only a new game resets it."""
