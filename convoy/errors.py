"""
Error taxonomy for the convoy sync engine.

Validation problems block the action that caused them and are shown to
the user. Transient write, position source and simulation setup problems
never end a session; callers log them and carry on.
"""


class ConvoyError(Exception):
    """Base class for all convoy errors."""


class ValidationError(ConvoyError):
    """User input rejected (no name, unknown room, full room, empty text)."""


class MissingName(ValidationError):
    pass


class RoomNotFound(ValidationError):
    pass


class RoomFull(ValidationError):
    pass


class SessionCodeInUse(ValidationError):
    """Hosting on a code that already has a session and a leader."""


class PermissionDenied(ConvoyError):
    """A host-only action was attempted by a non-host participant."""


class InvalidTransition(ConvoyError):
    """Lifecycle action requested in a state that does not allow it."""


class TransientWriteError(ConvoyError):
    """A write to the shared store failed; the next update will try again."""


class PositionSourceError(ConvoyError):
    """The position source denied or lost the location fix."""


class SimulationSetupError(ConvoyError):
    """Geocoding or routing for a simulated drive failed."""


class DocumentDecodeError(ConvoyError):
    """A store document is missing fields or holds malformed values."""

    def __init__(self, kind: str, doc_id: object, detail: str) -> None:
        super().__init__(f"Malformed {kind} document {doc_id!r}: {detail}")
        self.kind = kind
        self.doc_id = doc_id
        self.detail = detail
