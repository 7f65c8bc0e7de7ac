"""Exception hierarchy for commit-helper.

Every error raised on purpose derives from CommitHelperError so the CLI (or
any other caller) can catch one type and show ``str(exc)`` to the user as-is.
"""


class CommitHelperError(Exception):
    """Base class for commit-helper errors."""


class ConfigError(CommitHelperError):
    """Raised when configuration is missing or invalid."""


class MissingTokenError(ConfigError):
    """Raised when no access token can be resolved for a forge."""

    def __init__(self, forge_kind: str, host_url: str | None = None):
        target = f"{forge_kind} ({host_url})" if host_url else forge_kind
        super().__init__(
            f"No access token configured for {target}. "
            "Set it in the config file or the matching environment variable."
        )
        self.forge_kind = forge_kind
        self.host_url = host_url


class UnsupportedForgeError(CommitHelperError):
    """Raised when a forge kind has no registered platform."""

    def __init__(self, forge_kind: str):
        super().__init__(f"Unsupported forge: {forge_kind}")
        self.forge_kind = forge_kind


class HttpError(CommitHelperError):
    """Raised when an HTTP request fails.

    ``status`` is 0 for transport failures (connection refused, DNS, timeout),
    in which case ``code`` says which.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        code: str = "",
        status: int = 0,
        reason: str = "",
        body: str = "",
    ):
        super().__init__(message)
        self.code = code
        self.status = status
        self.reason = reason
        self.body = body


class ResponseTooLargeError(HttpError):
    """Raised when a response body exceeds the size ceiling."""

    retryable = False


class MalformedResponseError(HttpError):
    """Raised when a successful response body is not valid JSON."""

    retryable = False


class GitError(CommitHelperError):
    """Raised when a git command fails."""
