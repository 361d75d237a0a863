"""Git operations used by the release pipeline.

Usage:
    from sgv.git import Repository

    repo = Repository(Path("/path/to/project"))
    if not repo.is_clean():
        ...
"""

from .repository import GitError, GitOutput, GitStatus, Repository, StatusEntry

__all__ = [
    "GitError",
    "GitOutput",
    "GitStatus",
    "Repository",
    "StatusEntry",
]
