"""Error taxonomy for the conversation engine and its collaborators.

``ValidationError`` and ``NotFoundError`` are raised inside a turn and turned
into renders by the engine. ``RecordStoreError`` wraps any persistence failure.
``TransportError`` never reaches the user; the dispatcher logs it and degrades.
Rate limiting and OTP failures are modelled as result values in
:mod:`dompet.rate_limit` and :mod:`dompet.otp` rather than exceptions.
"""


class DompetError(Exception):
    """Base class for application errors."""


class ValidationError(DompetError):
    """User input did not match the field the current flow step expects."""


class NotFoundError(DompetError):
    """A referenced account, goal, budget, category or transaction is gone."""

    def __init__(self, resource: str, key: object) -> None:
        super().__init__(f"{resource} {key!r} not found")
        self.resource = resource
        self.key = key


class RecordStoreError(DompetError):
    """The record store failed to read or write."""


class TransportError(DompetError):
    """Sending, editing or deleting a chat message failed."""
