"""Index persistence errors."""


class StateError(Exception):
    """Raised when a persisted index cannot be read or has the wrong shape."""
