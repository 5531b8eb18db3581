"""Exception taxonomy for the sync pipeline and passkey handoff."""


class SyncError(Exception):
    """Base class for recoverable refresh-cycle failures."""


class InvalidTimestamp(SyncError):
    pass


class TimestampTooFarFuture(SyncError):
    pass


class AmbiguousSeries(SyncError):
    """More than one series matched a metric's label set."""


class BackendQueryFailed(SyncError):
    pass


class WriteFailed(SyncError):
    pass


class CycleDeadlineExceeded(SyncError):
    """The refresh cycle ran out of its time budget."""


class AcquisitionFailed(SyncError):
    """Wraps any fault raised by the device acquisition layer."""


class PasskeyError(Exception):
    """Base class for passkey handoff failures."""


class PasskeyDeliveryTimeout(PasskeyError):
    """No pairing attempt claimed a submitted passkey in time."""


class NoPasskeyRequestPending(PasskeyError):
    pass


class PairingInProgress(PasskeyError):
    pass


class PasskeyRequestTimeout(PasskeyError):
    """The pairing procedure gave up waiting for a passkey."""
