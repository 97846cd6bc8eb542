"""Exception hierarchy with exit codes."""


class ChutorError(Exception):
    """Base exception for Chutor."""

    exit_code: int = 5

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidInputError(ChutorError):
    """Empty or malformed game list, or invalid CLI input."""

    exit_code = 2


class NetworkError(ChutorError):
    """Network or API error (Lichess)."""

    exit_code = 3


class WorkerError(ChutorError):
    """A classification worker raised or crashed; the whole batch fails."""

    exit_code = 4


class CacheError(ChutorError):
    """Disk cache read fault. Always handled inside the cache as a miss."""

    exit_code = 5
