"""Library for the version control operations the pipeline depends on.

The revision of the working tree identifies every artifact and image built by
a deployment, and the GitOps strategy commits the patched kustomization back to
the repository so that the cluster's continuous delivery controller can pick
it up.

Example usage:

```python
from heimdizzy import git_repo

repo = git_repo.GitRepo()
revision = repo.revision()
repo.commit_and_push([Path("k8s/kustomization.yaml")], "chore(k8s): update")
```
"""

from dataclasses import dataclass
import logging
from pathlib import Path
import time

import git

from .exceptions import VcsAdvisoryError

__all__ = [
    "GitRepo",
    "CommitResult",
    "fallback_revision",
]

_LOGGER = logging.getLogger(__name__)

NOTHING_TO_COMMIT = "nothing to commit"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def fallback_revision(now_ms: int | None = None) -> str:
    """Return a base36 millisecond timestamp for when git is unavailable."""
    value = now_ms if now_ms is not None else int(time.time() * 1000)
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


@dataclass
class CommitResult:
    """Outcome of committing and pushing a set of paths."""

    committed: bool
    """False when there was nothing to commit."""

    pushed: bool
    commit_hash: str | None = None


class GitRepo:
    """Version control operations against a local working tree."""

    def __init__(
        self,
        path: Path | None = None,
        remote: str = "origin",
        branch: str = "main",
    ) -> None:
        """Initialize GitRepo for the repository containing path."""
        self._path = path
        self._remote = remote
        self._branch = branch

    def _repo(self, path: Path | None = None) -> git.Repo:
        search = path or self._path or Path.cwd()
        if search.is_file():
            search = search.parent
        return git.Repo(str(search), search_parent_directories=True)

    def root(self) -> Path | None:
        """Return the root of the working tree, or None outside a repository."""
        try:
            return Path(self._repo().git.rev_parse("--show-toplevel"))
        except (git.GitError, OSError) as err:
            _LOGGER.debug("Unable to determine repository root: %s", err)
            return None

    def short_revision(self) -> str:
        """Return the short hash of HEAD, raising a git error on failure."""
        return str(self._repo().git.rev_parse("--short", "HEAD")).strip()

    def revision(self) -> str:
        """Return the short hash of HEAD, or a timestamp token if unavailable."""
        try:
            return self.short_revision()
        except (git.GitError, OSError, ValueError) as err:
            _LOGGER.warning("Could not get git hash, using timestamp: %s", err)
            return fallback_revision()

    def commit_and_push(self, paths: list[Path], message: str) -> CommitResult:
        """Stage, commit and push the paths.

        Nothing to commit is reported as an uncommitted result rather than an
        error. Any other failure raises `VcsAdvisoryError`.
        """
        if not paths:
            return CommitResult(committed=False, pushed=False)
        try:
            repo = self._repo(paths[0])
            repo.git.add(*[str(path) for path in paths])
            if repo.head.is_valid() and not repo.index.diff("HEAD"):
                _LOGGER.info("No changes to commit for %s", paths)
                return CommitResult(committed=False, pushed=False)
            repo.git.commit("-m", message)
            commit_hash = repo.head.commit.hexsha
            repo.git.push(self._remote, self._branch)
        except git.GitCommandError as err:
            if NOTHING_TO_COMMIT in str(err):
                return CommitResult(committed=False, pushed=False)
            raise VcsAdvisoryError(f"Git operation failed: {err}") from err
        except (git.GitError, git.exc.BadName, OSError, ValueError) as err:
            raise VcsAdvisoryError(f"Git operation failed: {err}") from err
        return CommitResult(committed=True, pushed=True, commit_hash=commit_hash)
