class MirrorError(Exception):
    """Base class for everything the mirror engine raises."""


class ConfigError(MirrorError, ValueError):
    pass


class IndexUnavailable(MirrorError):
    """The remote index could not be fetched or parsed. Fatal for the run."""


class DestinationInvalid(MirrorError):
    """The destination directory is missing or unusable. Fatal for the run."""


class ItemError(MirrorError):
    """A single fetch or delete failed. Retried, then skipped or escalated."""

    def __init__(self, message: str, uri: str = None):
        super().__init__(message)
        self.uri = uri


class ItemTransientError(ItemError):
    pass


class ItemPermanentError(ItemError):
    pass
