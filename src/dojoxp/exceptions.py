"""Error taxonomy for the progression engine."""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for every error raised by the progression core."""


class InputError(ProgressionError):
    """Malformed or out-of-range arguments. Raised before any write."""


class NotFoundError(ProgressionError):
    """A referenced account or topic does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier!r} not found")


class PolicyViolation(ProgressionError):
    """A product rule blocks the action (e.g. daily mission cap reached).

    ``user_message`` is safe to show to the student as-is.
    """

    def __init__(self, code: str, user_message: str) -> None:
        self.code = code
        self.user_message = user_message
        super().__init__(f"{code}: {user_message}")


class ConcurrencyAnomaly(ProgressionError):
    """Storage reported that a write did not land on the expected row."""
