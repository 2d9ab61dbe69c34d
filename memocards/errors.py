"""
Error taxonomy for the memocards engine.

NotFoundError and ConflictError are recoverable by the caller (skip or
re-read and retry). StoreIOError is never retried by the engine itself.
InvalidInputError is always raised before any state is touched.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by memocards."""


class NotFoundError(EngineError):
    """A referenced card or deck does not exist."""

    def __init__(self, kind: str, ident: object):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class ConflictError(EngineError):
    """The card changed since the caller read it (version mismatch)."""

    def __init__(self, card_id: int, expected_version: int, actual_version: int | None = None):
        self.card_id = card_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Card {card_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ReviewConflictError(ConflictError):
    """A review kept conflicting after its single retry."""


class StoreIOError(EngineError):
    """Durable storage is unavailable or the write could not complete."""


class InvalidInputError(EngineError, ValueError):
    """Grade outside the scale, malformed content, or otherwise bad arguments."""
