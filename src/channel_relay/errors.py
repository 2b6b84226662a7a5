"""Error types raised by the channel lifecycle core."""

class RelayError(Exception):
    """Base class for every error the core raises on purpose."""

class ValidationError(RelayError):
    """Bad input from the caller; nothing was changed."""

class NotFound(RelayError):
    """The referenced channel does not exist."""

class AlreadyRunning(RelayError):
    """A relay process is already supervised for this channel."""

class NotReady(RelayError):
    """The channel has no downloaded source file to relay."""

class AcquisitionError(RelayError):
    """A source video could not be downloaded."""

class ProcessFailure(RelayError):
    """The relay process could not be spawned or crashed."""
