"""
Error taxonomy for handoff synchronization.

Transport-level exceptions (redis, sockets) are caught at the cache and
channel boundary and re-raised as one of the types below, so code above
that boundary only ever handles HandoffError subclasses.
"""


class HandoffError(Exception):
    """Base exception for all handoff errors"""
    pass


class StoreUnavailable(HandoffError):
    """
    The backing store could not be reached or rejected the request.

    Recoverable. Callers may retry, but must never treat this as
    "no pending data".
    """
    pass


class AdaptionFailure(HandoffError):
    """A payload was present but could not be encoded or decoded."""
    pass


class ConfigurationError(HandoffError):
    """Invalid settings supplied at startup. Fatal to initialization."""
    pass


__all__ = ["HandoffError", "StoreUnavailable", "AdaptionFailure", "ConfigurationError"]
