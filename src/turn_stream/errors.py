"""Exceptions raised by a streamed turn."""


class TurnError(RuntimeError):
    """Base class for failures that end a turn."""


class TurnSetupError(TurnError):
    """The turn could not start: no usable target or no stream."""


class StreamError(TurnError):
    """The backend reported an error inside the stream."""
