"""
Error taxonomy for the matching pipeline.

Every error carries a machine-readable ``kind`` so callers can tell a bad
request from an upstream outage or a cancelled invocation without parsing
messages.
"""


class MatchError(Exception):
    """Base class for all terminal matching errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InputError(MatchError):
    """Raised when the query entity or invocation options are unusable."""

    kind = "input"


class UpstreamError(MatchError):
    """Raised when the candidate or similarity source fails."""

    kind = "upstream"


class ComputeError(MatchError):
    """Raised on a numerical failure while scoring a single candidate."""

    kind = "compute"


class CancellationError(MatchError):
    """Raised when an invocation was cancelled or ran past its deadline."""

    kind = "cancelled"
