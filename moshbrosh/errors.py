"""
MoshBrosh — Error Taxonomy
Every engine failure derives from MoshError so callers can catch the family.
"""


class MoshError(Exception):
    """Base class for all engine errors."""
    pass


class InvalidInput(MoshError, ValueError):
    """Rejected before any computation: bad sizes, bad params, mismatched frames."""
    pass


class MissingPrerequisite(MoshError):
    """A frame's dependencies (reference or earlier raw frames) aren't cached yet.

    Expected while the cache is collecting. The compositor turns this into
    an interim output instead of surfacing it.
    """

    def __init__(self, message: str, missing: list[int] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class StateCorruption(MoshError, RuntimeError):
    """Internal invariant violated. Fatal: never return a frame after this."""
    pass
