"""
Error taxonomy shared by the server operations and the client wrapper.
"""


class GhostSessionError(Exception):
    """Base exception for session operations."""
    pass


class InvalidFormatError(GhostSessionError):
    """Malformed identifier or fingerprint, rejected before any stateful operation."""
    pass


class ConflictError(GhostSessionError):
    """Session identifier already present."""
    pass


class RateLimitedError(GhostSessionError):
    """Origin exceeded the creation ceiling for the current window."""
    pass


class NotFoundError(GhostSessionError):
    """Operation targets an absent or expired session."""
    pass


class UnreachableError(GhostSessionError):
    """Transport failure reaching the backing store or the server."""
    pass


class InternalFailureError(GhostSessionError):
    """Unexpected store or server failure."""
    pass
