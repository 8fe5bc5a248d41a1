"""Error taxonomy for the memory subsystem."""


class MemoryCoreError(Exception):
    """Base class for memory subsystem failures."""


class PersistenceError(MemoryCoreError):
    """Raised when a storage read or write fails (connectivity, constraint, auth)."""


class ProviderError(MemoryCoreError):
    """Raised when the embedding provider fails or returns malformed data."""


class ValidationError(MemoryCoreError):
    """Raised for malformed input such as a bad confirmation token or empty content."""
