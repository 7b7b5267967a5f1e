from typing import Optional


class LeaderboardError(Exception):
    """Base for every error raised inside the leaderboard engine."""


class ChainCallError(LeaderboardError):
    """A single contract read, batch element or log query failed.

    `reverted` separates an execution revert (the contract said no, e.g. an
    index past the end of an array) from a transport/RPC failure.
    """

    def __init__(self, message: str, *, method: str = "", endpoint: str = "", reverted: bool = False):
        super().__init__(message)
        self.method = method
        self.endpoint = endpoint
        self.reverted = reverted


class CacheUnavailableError(LeaderboardError):
    """Cache backend unreachable or returned an unusable reply."""


class UnauthorizedRefreshError(LeaderboardError):
    """Forced refresh requested without the admin secret."""


class ReconstructionFailure(LeaderboardError):
    """Upstream failed so completely that no usable balances exist."""

    def __init__(self, message: str, *, strategy: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.strategy = strategy
        self.cause = cause
