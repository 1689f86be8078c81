class TransportError(RuntimeError):
    """The radio transport could not be initialised or a connection failed."""


class PollError(RuntimeError):
    """An active poll cycle failed; the cycle is skipped."""


class PollTimeoutError(PollError):
    """No notification arrived within the device timeout."""


class NotificationParseError(PollError):
    """A notification payload was not a ``KEY=VALUE`` list of numbers."""
