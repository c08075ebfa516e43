"""Caller-facing error type for the Syzygy tool server.

Every failure that should reach the calling agent as a readable tool
outcome (bad arguments, missing runs, missing artifacts, unusable
commands) is raised as a SyzygyError carrying a stable machine-readable
code. Storage and OS errors are not wrapped; they propagate as-is.
"""


class SyzygyError(Exception):
    """A recoverable, reportable failure with a stable error code.

    Attributes:
        code: Machine-readable error kind (e.g. "run_not_found").
        message: Human-readable description for the caller.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} ({self.code})"


__all__ = ["SyzygyError"]
