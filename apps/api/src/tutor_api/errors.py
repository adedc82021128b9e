class OfflineError(RuntimeError):
    pass


class StorageUnavailable(OfflineError):
    """The local store cannot be opened or a storage call failed."""


class UnsupportedPayload(OfflineError):
    """A mutating request body is not text/JSON and cannot be queued."""


class NetworkFailure(OfflineError):
    """The upstream could not be reached. HTTP error statuses are not failures."""


class ReplayFailure(OfflineError):
    """A queued request could not be delivered during a replay pass."""
