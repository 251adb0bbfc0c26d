"""Error types shared across memhub."""


class MemhubError(Exception):
    """Base class for memhub errors."""

    pass


class ValidationError(MemhubError):
    """Raised when operation input is malformed or out of range.

    Always raised before the store is touched.
    """

    pass


class StoreError(MemhubError):
    """Raised when the persistence layer fails (connectivity, timeout, constraint)."""

    pass
