"""Discover the remote URL of the current git repository."""

import logging
import subprocess
from pathlib import Path

from .errors import GitError

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"


def _run_git(*args: str, cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout."""
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            check=True,
            encoding="utf-8",
            errors="replace",
            cwd=cwd,
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        if "not a git repository" in stderr.lower():
            raise GitError("Not inside a git repository") from e
        raise GitError(f"Git command failed: git {' '.join(args)}\n{stderr}") from e
    except FileNotFoundError as e:
        raise GitError("Git is not installed or not in PATH") from e
    return result.stdout


def list_remotes(cwd: str | Path | None = None) -> list[str]:
    """Names of the configured remotes, in git's order."""
    output = _run_git("remote", cwd=cwd)
    return [line.strip() for line in output.splitlines() if line.strip()]


def get_remote_url(
    cwd: str | Path | None = None, remote: str | None = None
) -> str | None:
    """Fetch URL of a remote.

    Args:
        cwd: Repository directory (defaults to the process cwd).
        remote: Remote name. Defaults to origin, else the first remote.

    Returns:
        The URL, or None if the repository has no remotes.

    Raises:
        GitError: git is missing, cwd is not a repository, or the named
            remote does not exist.
    """
    if remote is None:
        remotes = list_remotes(cwd)
        if not remotes:
            logger.debug("Repository has no remotes")
            return None
        remote = DEFAULT_REMOTE if DEFAULT_REMOTE in remotes else remotes[0]

    url = _run_git("remote", "get-url", remote, cwd=cwd).strip()
    logger.debug("Remote %s -> %s", remote, url)
    return url or None
